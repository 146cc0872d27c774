"""
FastAPI Production Application

Main entry point for the Site Analytics API.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from redis.exceptions import RedisError
import structlog

from site_analytics.config import get_settings
from site_analytics.config.logging import configure_logging
from site_analytics.database.connection import init_database, close_database, create_tables
from site_analytics.serving.api.main import create_api_app, install_services
from site_analytics.serving.cache import StatsCache, init_redis, close_redis
from site_analytics.store.sql import SQLEventStore

logger = structlog.get_logger(__name__)

SHUTDOWN_DRAIN_SECONDS = 10


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = get_settings()
    configure_logging()

    logger.info("Starting Site Analytics API", environment=settings.app_env)

    engine = await init_database()
    if settings.database.create_tables:
        await create_tables(engine)

    cache = StatsCache()
    if settings.redis.enabled:
        try:
            client = await init_redis()
            cache = StatsCache(client, ttl=settings.redis.stats_ttl_seconds)
        except RedisError as e:
            logger.warning("Redis init failed, serving stats uncached", error=str(e))

    install_services(app, SQLEventStore(engine), cache)

    yield

    logger.info("Shutting down...")
    await app.state.ingestion.drain(timeout=SHUTDOWN_DRAIN_SECONDS)
    await close_redis()
    await close_database()


app = create_api_app(lifespan=lifespan)


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
