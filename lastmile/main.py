"""
Last Mile Waybills API

Allocates Naquel waybills from the pre-provisioned pool and registers
shipment manifests with the carrier.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from lastmile import __version__
from lastmile.api import api_router
from lastmile.core.config import settings
from lastmile.core.database import check_database_connection, engine
from lastmile.core.error_handler import register_error_handlers

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup - keep serving even when the database is down; /health reports it
    if not await check_database_connection():
        logger.warning("Database unreachable at startup, waybill routes will fail until it recovers")
    logger.info(f"{settings.APP_NAME} started (environment={settings.ENVIRONMENT})")
    yield
    # Shutdown
    await engine.dispose()
    logger.info(f"{settings.APP_NAME} shutting down")


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Last-mile waybill pool and carrier submission service",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
)

register_error_handlers(app)

# Include API routes
app.include_router(api_router, prefix=f"/api/{settings.API_VERSION}")


# Health check
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    database_ok = await check_database_connection()
    return {
        "status": "healthy" if database_ok else "degraded",
        "database": "connected" if database_ok else "unavailable",
        "app": settings.APP_NAME,
        "version": __version__,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "lastmile.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
