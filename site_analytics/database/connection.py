"""
Database Connection Management

Async database engine and session factory with SQLAlchemy 2.0.
Implements health checks and graceful shutdown.
"""

from typing import Optional
import time

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, StaticPool
from sqlalchemy import text

from site_analytics.config import get_settings
from site_analytics.database.models import Base

logger = structlog.get_logger(__name__)

# Global engine
_engine: Optional[AsyncEngine] = None


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    In-memory SQLite shares one connection so every session sees the same
    database; everything else uses NullPool and lets the driver pool.
    """
    engine_config = {
        "echo": echo,
        "pool_pre_ping": True,
    }
    if url.startswith("sqlite") and ":memory:" in url:
        engine_config.update({
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        })
    else:
        engine_config["poolclass"] = NullPool

    return create_async_engine(url, **engine_config)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to an engine"""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_database(url: Optional[str] = None) -> AsyncEngine:
    """
    Initialize the database engine.

    Args:
        url: Override the configured database URL

    Returns:
        AsyncEngine: The initialized database engine
    """
    global _engine

    if _engine is not None:
        logger.warning("Database already initialized")
        return _engine

    settings = get_settings()
    _engine = build_engine(url or settings.database.async_url, echo=settings.database.echo)

    # Verify connection
    try:
        async with _engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info(
            "Database connection established",
            dialect=_engine.dialect.name,
        )
    except Exception as e:
        logger.error("Failed to connect to database", error=str(e))
        await _engine.dispose()
        _engine = None
        raise

    return _engine


async def create_tables(engine: Optional[AsyncEngine] = None) -> None:
    """Create any missing pipeline tables"""
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured", tables=sorted(Base.metadata.tables))


async def close_database() -> None:
    """
    Close the database engine.

    Gracefully disposes all connections.
    """
    global _engine

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        logger.info("Database connection pool closed")


def get_engine() -> AsyncEngine:
    """
    Get the database engine.

    Raises:
        RuntimeError: If database is not initialized
    """
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _engine


async def check_database_health(engine: Optional[AsyncEngine] = None) -> dict:
    """
    Check database health status.

    Returns:
        dict: Health status with latency information
    """
    try:
        engine = engine or get_engine()
        start = time.perf_counter()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        latency_ms = (time.perf_counter() - start) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(latency_ms, 2),
            "dialect": engine.dialect.name,
        }
    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e),
        }
