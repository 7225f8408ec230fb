"""
Database Connection Management

Async SQLAlchemy 2.0 engine creation for the database-backed table store.
"""

import time
from typing import Optional

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from dwh.config import get_settings

logger = structlog.get_logger(__name__)


def create_engine(url: Optional[str] = None) -> AsyncEngine:
    """
    Create an async engine for the warehouse database.

    Args:
        url: SQLAlchemy URL, defaults to the configured database

    Returns:
        AsyncEngine: Engine without a client-side pool
    """
    settings = get_settings()

    # Batch runs open few connections; asyncpg/aiosqlite manage their own
    return create_async_engine(
        url or settings.database.async_url,
        echo=settings.database.echo,
        poolclass=NullPool,
        pool_pre_ping=True,
    )


async def check_database_health(engine: AsyncEngine) -> dict:
    """
    Check database health status.

    Returns:
        dict: Health status with latency information
    """
    try:
        start = time.perf_counter()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        latency_ms = (time.perf_counter() - start) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(latency_ms, 2),
        }
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        return {
            "status": "unhealthy",
            "error": str(e),
        }
