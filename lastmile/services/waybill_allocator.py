"""
Waybill Allocator

Hands waybills out of the pre-provisioned pool and takes them back.

- take(): atomic claim of the lowest available waybill for (vendor, series)
- release(): return a waybill the carrier never accepted
- check_availability(): read-only lookup, never raises for unknown codes
- stats(): pool usage for dashboards and alerting

Pool exhaustion and missing configuration are fatal and raised with enough
structure (vendor, series, counts) for the caller to act on. The allocator
itself never retries.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from lastmile.core.config import settings
from lastmile.core.exceptions import (
    PoolContentionError,
    PoolExhaustedError,
    PoolNotConfiguredError,
)
from lastmile.services.waybill_pool_store import WaybillAllocation, WaybillPoolStore

logger = logging.getLogger(__name__)


@dataclass
class ReleaseOutcome:
    """Result of returning a waybill to the pool."""
    code: str
    vendor: str
    released: bool
    message: str


@dataclass
class AvailabilityStatus:
    """Availability of a single waybill."""
    code: str
    exists: bool
    available: bool
    used_at: Optional[datetime] = None
    message: str = ""


@dataclass
class PoolStats:
    """Usage statistics for a (vendor, series) sub-pool."""
    vendor: str
    series: str
    total: int
    used: int
    available: int
    next_available: Optional[str] = None
    last_used: Optional[str] = None


class WaybillAllocator:
    """
    Allocator over an injected pool store.

    Usage:
        allocator = WaybillAllocator(SQLAlchemyWaybillPoolStore(AsyncSessionLocal))
        allocation = await allocator.take("NAQUEL", "PRIME")
    """

    def __init__(
        self,
        store: WaybillPoolStore,
        default_vendor: Optional[str] = None,
        default_series: Optional[str] = None,
    ):
        self.store = store
        self.default_vendor = default_vendor or settings.WAYBILL_DEFAULT_VENDOR
        self.default_series = default_series or settings.WAYBILL_DEFAULT_SERIES

    async def take(self, vendor: Optional[str] = None, series: Optional[str] = None) -> WaybillAllocation:
        """
        Claim the next available waybill.

        Raises:
            PoolNotConfiguredError: No waybills exist for (vendor, series)
            PoolExhaustedError: Every waybill is used
            PoolContentionError: Available waybills are all locked by concurrent takers
            PoolStoreUnavailableError: Store failure
        """
        vendor = vendor or self.default_vendor
        series = series or self.default_series

        allocation = await self.store.take_next(vendor, series)
        if allocation is not None:
            logger.info(f"Allocated waybill number: {allocation.code} (ID: {allocation.id})")
            return allocation

        counts = await self.store.get_counts(vendor, series)

        if counts.total == 0:
            logger.error(f"No waybill numbers configured for vendor: {vendor}, series: {series}")
            raise PoolNotConfiguredError(vendor, series)

        if counts.used >= counts.total:
            logger.error(f"Waybill limit reached: all {counts.total} used for {vendor}/{series}")
            raise PoolExhaustedError(vendor, series, total=counts.total, used=counts.used)

        logger.warning(
            f"{counts.available} waybills available for {vendor}/{series} "
            f"but all are locked by concurrent requests"
        )
        raise PoolContentionError(vendor, series, available=counts.available)

    async def release(self, code: str, vendor: Optional[str] = None) -> ReleaseOutcome:
        """
        Return a waybill to the pool.

        Idempotent. Waybills consumed by the conflict reconciler stay consumed.
        """
        vendor = vendor or self.default_vendor
        released = await self.store.release(code, vendor)

        if released:
            logger.info(f"Released waybill {code} back to pool")
            message = "Waybill released successfully"
        else:
            logger.info(f"Waybill {code} not released (already available, reconciled or unknown)")
            message = "Waybill already available, permanently consumed, or not found"

        return ReleaseOutcome(code=code, vendor=vendor, released=released, message=message)

    async def check_availability(self, code: str, vendor: Optional[str] = None) -> AvailabilityStatus:
        """Look up a single waybill. Unknown codes report exists=False."""
        vendor = vendor or self.default_vendor
        record = await self.store.get_record(code, vendor)

        if record is None:
            return AvailabilityStatus(
                code=code,
                exists=False,
                available=False,
                message="Waybill number not found in database",
            )

        available = not record.is_used and not record.is_test
        if available:
            message = "Available"
        elif record.is_test:
            message = "Test waybill"
        else:
            message = "Already used"

        return AvailabilityStatus(
            code=code,
            exists=True,
            available=available,
            used_at=record.used_at,
            message=message,
        )

    async def stats(self, vendor: Optional[str] = None, series: Optional[str] = None) -> PoolStats:
        """Usage statistics for the sub-pool."""
        vendor = vendor or self.default_vendor
        series = series or self.default_series
        counts = await self.store.get_counts(vendor, series)

        return PoolStats(
            vendor=vendor,
            series=series,
            total=counts.total,
            used=counts.used,
            available=counts.available,
            next_available=counts.lowest_available,
            last_used=counts.highest_used,
        )
