"""
Conflict Reconciler

When the carrier answers "waybill already exists", the local pool was stale:
the carrier already holds that waybill. The reconciler records this so the
waybill is never handed out or released again.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from lastmile.core.config import settings
from lastmile.services.waybill_pool_store import WaybillPoolStore

logger = logging.getLogger(__name__)


@dataclass
class ReconcileOutcome:
    """Result of mark_consumed()."""
    code: str
    vendor: str
    found: bool
    already_consumed: bool
    message: str


class ConflictReconciler:
    """Marks carrier-held waybills as permanently consumed."""

    def __init__(self, store: WaybillPoolStore, default_vendor: Optional[str] = None):
        self.store = store
        self.default_vendor = default_vendor or settings.WAYBILL_DEFAULT_VENDOR

    async def mark_consumed(self, code: str, vendor: Optional[str] = None) -> ReconcileOutcome:
        """
        Permanently consume a waybill the carrier reported as already registered.

        Idempotent: a waybill that is already used is reported as
        already_consumed. Unknown codes are reported, never created.
        """
        vendor = vendor or self.default_vendor
        outcome = await self.store.mark_consumed(code, vendor)

        if outcome is None:
            logger.warning(f"Waybill {code} not found for vendor {vendor}, nothing to reconcile")
            return ReconcileOutcome(
                code=code,
                vendor=vendor,
                found=False,
                already_consumed=False,
                message="Waybill not found",
            )

        if outcome.already_consumed:
            logger.info(f"Waybill {code} was already marked as used; conflict recorded")
            message = "Waybill already consumed"
        else:
            logger.info(f"Marked waybill number as used: {code} (carrier conflict detected)")
            message = "Waybill marked as used successfully"

        return ReconcileOutcome(
            code=code,
            vendor=vendor,
            found=True,
            already_consumed=outcome.already_consumed,
            message=message,
        )
