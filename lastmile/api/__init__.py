"""
API routes
"""
from fastapi import APIRouter

from lastmile.api.routes import waybills

api_router = APIRouter()

api_router.include_router(waybills.router)
