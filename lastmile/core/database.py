"""
Database configuration and session management

Pool sizing follows the environment: production uses the configured limits,
everything else a small local pool.
"""
import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from lastmile.core.config import settings

logger = logging.getLogger(__name__)

pool_config = {}

if settings.ENVIRONMENT == "production":
    pool_config = {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_recycle": settings.DB_POOL_RECYCLE,
        "pool_pre_ping": True,  # Verify connections before use
    }
else:
    pool_config = {
        "pool_size": 2,
        "max_overflow": 5,
        "pool_pre_ping": True,
    }

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    future=True,
    **pool_config,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


async def check_database_connection() -> bool:
    """
    Ping the database once.

    Used at startup; the service keeps running when the database is down so
    health checks can report it, but every pool operation will fail.
    """
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database connection verified")
        return True
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False
