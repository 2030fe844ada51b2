"""
API dependencies
"""
import secrets
from functools import lru_cache
from typing import AsyncIterator, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from lastmile.core.config import settings
from lastmile.core.database import AsyncSessionLocal
from lastmile.modules.shipping.carriers import CarrierFactory
from lastmile.modules.shipping.carriers.base import BaseWaybillCarrier, CarrierCode
from lastmile.services.conflict_reconciler import ConflictReconciler
from lastmile.services.waybill_allocator import WaybillAllocator
from lastmile.services.waybill_pool_store import SQLAlchemyWaybillPoolStore, WaybillPoolStore
from lastmile.services.waybill_submission import WaybillSubmissionOrchestrator

security = HTTPBearer(auto_error=False)


async def require_api_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """Require the shared bearer token"""
    if not credentials or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "success": False,
                "message": "Access token required",
                "error": "MISSING_TOKEN",
            },
        )

    expected = settings.API_BEARER_TOKEN or ""
    if not expected or not secrets.compare_digest(credentials.credentials, expected):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "success": False,
                "message": "Invalid access token",
                "error": "INVALID_TOKEN",
            },
        )

    return credentials.credentials


@lru_cache
def get_pool_store() -> WaybillPoolStore:
    """Process-wide pool store over the app's session factory"""
    return SQLAlchemyWaybillPoolStore(AsyncSessionLocal)


def get_allocator(store: WaybillPoolStore = Depends(get_pool_store)) -> WaybillAllocator:
    return WaybillAllocator(store)


def get_reconciler(store: WaybillPoolStore = Depends(get_pool_store)) -> ConflictReconciler:
    return ConflictReconciler(store)


async def get_carrier() -> AsyncIterator[BaseWaybillCarrier]:
    """Carrier client for one request, closed afterwards"""
    carrier = CarrierFactory.get_carrier(CarrierCode.NAQUEL)
    try:
        yield carrier
    finally:
        await carrier.close()


def get_orchestrator(
    allocator: WaybillAllocator = Depends(get_allocator),
    reconciler: ConflictReconciler = Depends(get_reconciler),
    carrier: BaseWaybillCarrier = Depends(get_carrier),
) -> WaybillSubmissionOrchestrator:
    return WaybillSubmissionOrchestrator(allocator, reconciler, carrier)
