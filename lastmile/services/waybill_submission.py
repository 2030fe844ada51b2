"""
Waybill Submission Orchestrator

Drives one manifest from "needs a waybill" to "registered with the carrier".

Submission Flow:
    ALLOCATING  -> take the next waybill from the pool
    SUBMITTING  -> register the manifest with the carrier
    then one of:
    SUCCESS        carrier accepted the waybill
    CONFLICT_RETRY carrier already holds the waybill: reconcile, take another
    SKIP_RETRY     carrier hit its code 120 defect: take another, leave this one used
    HARD_FAIL      anything else: release the held waybill, raise

The loop is bounded by a safety ceiling on carrier submissions made with pool
waybills, so a carrier that rejects everything cannot drain the pool.

Custom waybill mode submits a caller-supplied waybill once, with no pool
interaction and no retries.
"""
import asyncio
import logging
import secrets
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from lastmile.core.config import settings
from lastmile.core.exceptions import (
    CarrierTerminalError,
    CarrierTransportError,
    CustomWaybillConflictError,
    CustomWaybillDefectError,
    PoolContentionError,
    PoolStoreUnavailableError,
    RetrySafetyLimitExceededError,
    TransportFailureError,
    WaybillAllocationFailedError,
)
from lastmile.modules.shipping.carriers.base import (
    BaseWaybillCarrier,
    CarrierSubmissionResult,
    WaybillManifest,
)
from lastmile.services.conflict_reconciler import ConflictReconciler
from lastmile.services.waybill_allocator import WaybillAllocator
from lastmile.services.waybill_pool_store import WaybillAllocation

logger = logging.getLogger(__name__)

CONFLICT_MARKER = "waybill already exists"
TRANSIENT_DEFECT_MARKER = "an error happen when saving the waybill details code : 120"


class SubmissionState(str, Enum):
    ALLOCATING = "ALLOCATING"
    SUBMITTING = "SUBMITTING"
    SUCCESS = "SUCCESS"
    CONFLICT_RETRY = "CONFLICT_RETRY"
    SKIP_RETRY = "SKIP_RETRY"
    HARD_FAIL = "HARD_FAIL"


class CarrierResponseKind(str, Enum):
    NONE = "NONE"
    CONFLICT = "CONFLICT"
    TRANSIENT_DEFECT = "TRANSIENT_DEFECT"
    TERMINAL = "TERMINAL"


def classify_carrier_response(has_error: bool, message: Optional[str]) -> CarrierResponseKind:
    """
    Classify a carrier answer.

    Matching is a case-insensitive substring match on the carrier message.
    """
    if not has_error:
        return CarrierResponseKind.NONE

    text = (message or "").lower()
    if CONFLICT_MARKER in text:
        return CarrierResponseKind.CONFLICT
    if TRANSIENT_DEFECT_MARKER in text:
        return CarrierResponseKind.TRANSIENT_DEFECT
    return CarrierResponseKind.TERMINAL


def generate_export_reference() -> str:
    """Random export reference in the LEX-########## format."""
    return f"LEX-{1000000000 + secrets.randbelow(9000000000)}"


@dataclass
class SubmissionPolicy:
    """Retry knobs for the submission loop."""
    retry_delay_seconds: float = 0.5
    max_retry_attempts: int = 50
    allocation_max_attempts: int = 10
    allocation_retry_delay_seconds: float = 1.0
    transport_max_attempts: int = 10
    transport_retry_delay_seconds: float = 1.0

    @classmethod
    def from_settings(cls) -> "SubmissionPolicy":
        return cls(
            retry_delay_seconds=settings.WAYBILL_RETRY_DELAY_SECONDS,
            max_retry_attempts=settings.WAYBILL_MAX_RETRY_ATTEMPTS,
            allocation_max_attempts=settings.WAYBILL_ALLOCATION_MAX_ATTEMPTS,
            allocation_retry_delay_seconds=settings.WAYBILL_ALLOCATION_RETRY_DELAY_SECONDS,
            transport_max_attempts=settings.CARRIER_TRANSPORT_MAX_ATTEMPTS,
            transport_retry_delay_seconds=settings.CARRIER_TRANSPORT_RETRY_DELAY_SECONDS,
        )


@dataclass
class SubmissionResult:
    """Result of a successful submission."""
    waybill_no: str
    vendor: str
    series: str
    carrier_waybill_no: Optional[str] = None
    booking_ref_no: Optional[str] = None
    message: str = ""
    reference: str = ""
    attempts: int = 1
    conflicted: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    is_custom: bool = False
    allocation_id: Optional[int] = None
    correlation_id: Optional[str] = None


class WaybillSubmissionOrchestrator:
    """
    Coordinates allocator, carrier and reconciler for one submission at a time.

    Instances hold no per-submission state and can serve concurrent submit()
    calls; the pool store is the only shared mutable state.

    Usage:
        orchestrator = WaybillSubmissionOrchestrator(allocator, reconciler, carrier)
        result = await orchestrator.submit(manifest)
    """

    def __init__(
        self,
        allocator: WaybillAllocator,
        reconciler: ConflictReconciler,
        carrier: BaseWaybillCarrier,
        policy: Optional[SubmissionPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.allocator = allocator
        self.reconciler = reconciler
        self.carrier = carrier
        self.policy = policy or SubmissionPolicy.from_settings()
        self._sleep = sleep

    async def submit(
        self,
        manifest: WaybillManifest,
        use_custom_waybill: bool = False,
        waybill_no: Optional[str] = None,
        vendor: Optional[str] = None,
        series: Optional[str] = None,
    ) -> SubmissionResult:
        """
        Register a manifest with the carrier.

        Raises:
            PoolExhaustedError / PoolNotConfiguredError: Pool cannot supply a waybill
            WaybillAllocationFailedError: Store kept failing during allocation
            TransportFailureError: Carrier unreachable for every transport attempt
            CarrierTerminalError: Carrier rejected the manifest
            RetrySafetyLimitExceededError: Too many consecutive rejected waybills
            CustomWaybillConflictError / CustomWaybillDefectError: Custom mode only
        """
        vendor = vendor or self.allocator.default_vendor
        series = series or self.allocator.default_series
        correlation_id = str(uuid.uuid4())

        if not manifest.reference:
            manifest = replace(manifest, reference=generate_export_reference())
            logger.info(f"Generated export reference: {manifest.reference}")

        if use_custom_waybill:
            if not waybill_no:
                raise ValueError("waybill_no is required when use_custom_waybill is set")
            return await self._submit_custom(manifest, waybill_no, vendor, series, correlation_id)

        logger.info(f"Starting waybill submission for {vendor}/{series}, correlation_id={correlation_id}")

        conflicted: List[str] = []
        skipped: List[str] = []
        attempts = 0

        while True:
            self._enter(SubmissionState.ALLOCATING, correlation_id)
            allocation = await self._allocate(vendor, series, correlation_id)

            self._enter(SubmissionState.SUBMITTING, correlation_id, allocation.code)
            try:
                response = await self._submit_with_transport_retry(
                    manifest, allocation.code, correlation_id
                )
            except Exception:
                self._enter(SubmissionState.HARD_FAIL, correlation_id, allocation.code)
                await self._release_quietly(allocation, correlation_id)
                raise

            attempts += 1
            kind = classify_carrier_response(response.has_error, response.message)

            if kind is CarrierResponseKind.NONE:
                self._enter(SubmissionState.SUCCESS, correlation_id, allocation.code)
                logger.info(
                    f"Waybill {allocation.code} accepted by {self.carrier.carrier_name} "
                    f"after {attempts} attempt(s), correlation_id={correlation_id}"
                )
                return SubmissionResult(
                    waybill_no=allocation.code,
                    vendor=vendor,
                    series=series,
                    carrier_waybill_no=response.waybill_no,
                    booking_ref_no=response.booking_ref_no,
                    message=response.message,
                    reference=manifest.reference,
                    attempts=attempts,
                    conflicted=conflicted,
                    skipped=skipped,
                    allocation_id=allocation.id,
                    correlation_id=correlation_id,
                )

            if kind is CarrierResponseKind.TERMINAL:
                self._enter(SubmissionState.HARD_FAIL, correlation_id, allocation.code)
                logger.error(
                    f"Carrier rejected waybill {allocation.code}: {response.message}, "
                    f"correlation_id={correlation_id}"
                )
                released = await self._release_quietly(allocation, correlation_id)
                raise CarrierTerminalError(
                    response.message,
                    waybill_no=allocation.code,
                    released=released,
                )

            if kind is CarrierResponseKind.CONFLICT:
                self._enter(SubmissionState.CONFLICT_RETRY, correlation_id, allocation.code)
                conflicted.append(allocation.code)
                logger.warning(
                    f"Waybill {allocation.code} already exists at carrier (attempt {attempts}), "
                    f"reconciling and retrying, correlation_id={correlation_id}"
                )
                await self._reconcile_quietly(allocation, correlation_id)
            else:
                self._enter(SubmissionState.SKIP_RETRY, correlation_id, allocation.code)
                skipped.append(allocation.code)
                logger.warning(
                    f"Carrier error 120 for waybill {allocation.code} (attempt {attempts}), "
                    f"skipping to next waybill, correlation_id={correlation_id}"
                )

            if attempts >= self.policy.max_retry_attempts:
                self._enter(SubmissionState.HARD_FAIL, correlation_id)
                logger.error(
                    f"Safety limit reached after {attempts} rejected waybills "
                    f"({len(conflicted)} conflicted, {len(skipped)} skipped), "
                    f"correlation_id={correlation_id}"
                )
                raise RetrySafetyLimitExceededError(
                    attempts=attempts,
                    limit=self.policy.max_retry_attempts,
                    conflicted=conflicted,
                    skipped=skipped,
                )

            logger.debug(f"Waiting {self.policy.retry_delay_seconds}s before next waybill, correlation_id={correlation_id}")
            await self._sleep(self.policy.retry_delay_seconds)

    def _enter(self, state: SubmissionState, correlation_id: str, waybill_no: Optional[str] = None) -> None:
        suffix = f" waybill={waybill_no}" if waybill_no else ""
        logger.debug(f"Submission {correlation_id} -> {state.value}{suffix}")

    async def _submit_custom(
        self,
        manifest: WaybillManifest,
        waybill_no: str,
        vendor: str,
        series: str,
        correlation_id: str,
    ) -> SubmissionResult:
        """Submit a caller-supplied waybill once. Never touches the pool."""
        logger.info(f"Using custom waybill {waybill_no}, correlation_id={correlation_id}")

        response = await self._submit_with_transport_retry(manifest, waybill_no, correlation_id)
        kind = classify_carrier_response(response.has_error, response.message)

        if kind is CarrierResponseKind.CONFLICT:
            logger.error(f"Custom waybill {waybill_no} already exists at carrier")
            raise CustomWaybillConflictError(
                f"Custom waybill {waybill_no} already exists in the carrier system. "
                "Please use a different waybill number.",
                waybill_no=waybill_no,
                carrier_message=response.message,
            )

        if kind is CarrierResponseKind.TRANSIENT_DEFECT:
            logger.error(f"Custom waybill {waybill_no} hit carrier error 120")
            raise CustomWaybillDefectError(
                f"Custom waybill {waybill_no} encountered carrier error 120. "
                "Please try a different waybill number.",
                waybill_no=waybill_no,
                carrier_message=response.message,
            )

        if kind is CarrierResponseKind.TERMINAL:
            logger.error(f"Carrier rejected custom waybill {waybill_no}: {response.message}")
            raise CarrierTerminalError(response.message, waybill_no=waybill_no)

        return SubmissionResult(
            waybill_no=waybill_no,
            vendor=vendor,
            series=series,
            carrier_waybill_no=response.waybill_no,
            booking_ref_no=response.booking_ref_no,
            message=response.message,
            reference=manifest.reference,
            attempts=1,
            is_custom=True,
            correlation_id=correlation_id,
        )

    async def _allocate(self, vendor: str, series: str, correlation_id: str) -> WaybillAllocation:
        """
        Take a waybill, retrying store-level transient failures.

        Exhaustion and missing configuration propagate unchanged.
        """
        max_attempts = self.policy.allocation_max_attempts
        last_error: Optional[Exception] = None

        for attempt in range(1, max_attempts + 1):
            try:
                return await self.allocator.take(vendor, series)
            except (PoolContentionError, PoolStoreUnavailableError) as e:
                last_error = e
                logger.warning(
                    f"Waybill allocation attempt {attempt}/{max_attempts} failed: {e.message}, "
                    f"correlation_id={correlation_id}"
                )
                if attempt < max_attempts:
                    await self._sleep(self.policy.allocation_retry_delay_seconds)

        logger.error(f"Waybill allocation failed after {max_attempts} attempts, correlation_id={correlation_id}")
        raise WaybillAllocationFailedError(
            f"Failed to allocate waybill after {max_attempts} attempts: {last_error}",
            attempts=max_attempts,
        ) from last_error

    async def _submit_with_transport_retry(
        self,
        manifest: WaybillManifest,
        waybill_no: str,
        correlation_id: str,
    ) -> CarrierSubmissionResult:
        """Call the carrier, retrying transport failures with the same waybill."""
        max_attempts = self.policy.transport_max_attempts
        last_error: Optional[CarrierTransportError] = None

        for attempt in range(1, max_attempts + 1):
            try:
                return await self.carrier.submit_waybill(manifest, waybill_no)
            except CarrierTransportError as e:
                last_error = e
                logger.warning(
                    f"Carrier call for waybill {waybill_no} failed "
                    f"(attempt {attempt}/{max_attempts}): {e.message}, correlation_id={correlation_id}"
                )
                if attempt < max_attempts:
                    await self._sleep(self.policy.transport_retry_delay_seconds)

        logger.error(
            f"{self.carrier.carrier_name} unreachable after {max_attempts} attempts "
            f"for waybill {waybill_no}, correlation_id={correlation_id}"
        )
        raise TransportFailureError(
            f"{self.carrier.carrier_name} unreachable after {max_attempts} attempts: {last_error}",
            attempts=max_attempts,
            waybill_no=waybill_no,
        ) from last_error

    async def _release_quietly(self, allocation: WaybillAllocation, correlation_id: str) -> bool:
        """Best-effort release; failures are logged and reported as False."""
        try:
            outcome = await self.allocator.release(allocation.code, allocation.vendor)
            return outcome.released
        except Exception as e:
            logger.error(
                f"Failed to release waybill {allocation.code}: {e}, correlation_id={correlation_id}"
            )
            return False

    async def _reconcile_quietly(self, allocation: WaybillAllocation, correlation_id: str) -> None:
        try:
            await self.reconciler.mark_consumed(allocation.code, allocation.vendor)
        except Exception as e:
            logger.error(
                f"Failed to mark waybill {allocation.code} as used after conflict: {e}, "
                f"correlation_id={correlation_id}"
            )
