"""
Waybill API Routes

Provides endpoints for:
- Pool operations (allocate, release, mark-used, availability, stats)
- Manifest submission to the carrier with conflict/defect retry

Errors are raised as WaybillBaseError subclasses and rendered by the
handlers in lastmile.core.error_handler.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from lastmile.api.deps import (
    get_allocator,
    get_orchestrator,
    get_reconciler,
    require_api_token,
)
from lastmile.schemas.waybill import (
    AllocateRequest,
    AllocateResponse,
    AvailabilityResponse,
    ErrorResponse,
    MarkUsedResponse,
    PoolStatsResponse,
    ReleaseResponse,
    SubmitRequest,
    SubmitResponse,
    WaybillCodeRequest,
)
from lastmile.services.conflict_reconciler import ConflictReconciler
from lastmile.services.waybill_allocator import WaybillAllocator
from lastmile.services.waybill_submission import WaybillSubmissionOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/waybills",
    tags=["waybills"],
    dependencies=[Depends(require_api_token)],
    responses={
        400: {"model": ErrorResponse, "description": "Pool exhausted or not configured"},
        409: {"model": ErrorResponse, "description": "Waybill already exists at the carrier"},
        502: {"model": ErrorResponse, "description": "Carrier rejected the request"},
        503: {"model": ErrorResponse, "description": "Carrier or pool store unavailable"},
    },
)


# ==================== Pool ====================


@router.post("/allocate", response_model=AllocateResponse)
async def allocate_waybill(
    request: AllocateRequest,
    allocator: WaybillAllocator = Depends(get_allocator),
):
    """Take the next available waybill from the pool."""
    allocation = await allocator.take(request.vendor, request.series)
    return AllocateResponse(
        waybill_no=allocation.code,
        id=allocation.id,
        vendor=allocation.vendor,
        series=allocation.series,
    )


@router.post("/release", response_model=ReleaseResponse)
async def release_waybill(
    request: WaybillCodeRequest,
    allocator: WaybillAllocator = Depends(get_allocator),
):
    """Return a waybill the carrier never accepted to the pool."""
    outcome = await allocator.release(request.waybill_no, request.vendor)
    return ReleaseResponse(
        waybill_no=outcome.code,
        vendor=outcome.vendor,
        released=outcome.released,
        message=outcome.message,
    )


@router.post("/mark-used", response_model=MarkUsedResponse)
async def mark_waybill_used(
    request: WaybillCodeRequest,
    reconciler: ConflictReconciler = Depends(get_reconciler),
):
    """Permanently consume a waybill the carrier already holds."""
    logger.info(f"Manual mark-used requested for waybill {request.waybill_no}")
    outcome = await reconciler.mark_consumed(request.waybill_no, request.vendor)
    return MarkUsedResponse(
        success=outcome.found,
        waybill_no=outcome.code,
        vendor=outcome.vendor,
        found=outcome.found,
        already_consumed=outcome.already_consumed,
        message=outcome.message,
    )


@router.get("/availability/{waybill_no}", response_model=AvailabilityResponse)
async def check_waybill_availability(
    waybill_no: str,
    vendor: Optional[str] = Query(None, max_length=50),
    allocator: WaybillAllocator = Depends(get_allocator),
):
    status = await allocator.check_availability(waybill_no, vendor)
    return AvailabilityResponse(
        waybill_no=status.code,
        exists=status.exists,
        available=status.available,
        used_at=status.used_at,
        message=status.message,
    )


@router.get("/stats", response_model=PoolStatsResponse)
async def get_pool_stats(
    vendor: Optional[str] = Query(None, max_length=50),
    series: Optional[str] = Query(None, max_length=50),
    allocator: WaybillAllocator = Depends(get_allocator),
):
    stats = await allocator.stats(vendor, series)
    return PoolStatsResponse(
        vendor=stats.vendor,
        series=stats.series,
        total=stats.total,
        used=stats.used,
        available=stats.available,
        next_available=stats.next_available,
        last_used=stats.last_used,
    )


# ==================== Submission ====================


@router.post("/submit", response_model=SubmitResponse)
async def submit_waybill(
    request: SubmitRequest,
    orchestrator: WaybillSubmissionOrchestrator = Depends(get_orchestrator),
):
    """
    Register a manifest with the carrier.

    Pool mode allocates waybills and retries through carrier conflicts and
    code 120 defects. Custom mode submits the given waybill exactly once.
    """
    result = await orchestrator.submit(
        request.manifest.to_manifest(),
        use_custom_waybill=request.use_custom_waybill,
        waybill_no=request.waybill_no.strip() if request.waybill_no else None,
        vendor=request.vendor,
        series=request.series,
    )
    return SubmitResponse(
        waybill_no=result.waybill_no,
        carrier_waybill_no=result.carrier_waybill_no,
        booking_ref_no=result.booking_ref_no,
        reference=result.reference,
        message=result.message,
        attempts=result.attempts,
        conflicted_waybills=result.conflicted,
        skipped_waybills=result.skipped,
        is_custom=result.is_custom,
        correlation_id=result.correlation_id,
    )
