"""
FastAPI Application Factory

Creates and configures the API application and wires services onto it.
"""

from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from site_analytics.aggregation.aggregator import create_aggregator
from site_analytics.config import get_settings
from site_analytics.ingestion.service import IngestionService
from site_analytics.serving.api.middleware import RequestLoggingMiddleware
from site_analytics.serving.api.routes import (
    events_router,
    health_router,
    metrics_router,
    stats_router,
)
from site_analytics.serving.cache import StatsCache
from site_analytics.serving.stats import StatsService
from site_analytics.store.base import EventStore


def install_services(app: FastAPI, store: EventStore, cache: Optional[StatsCache] = None) -> None:
    """
    Build the pipeline services over ``store`` and attach them to the app.

    A successful aggregator pass invalidates cached stats of the sites it touched.
    """
    settings = get_settings()
    cache = cache or StatsCache()

    app.state.store = store
    app.state.ingestion = IngestionService(store)
    app.state.stats = StatsService(store, top_paths_limit=settings.aggregation.top_paths_limit, cache=cache)
    app.state.aggregator = create_aggregator(
        store,
        on_sites_updated=cache.invalidate_sites if cache.enabled else None,
    )


def create_api_app(lifespan: Optional[Callable] = None) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        lifespan: Startup/shutdown handler; tests omit it and call
            :func:`install_services` directly

    Returns:
        Configured FastAPI app instance
    """
    settings = get_settings()

    app = FastAPI(
        title="Site Analytics API",
        description="Deferred event aggregation with pre-computed daily rollups",
        version=settings.version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(health_router, prefix="/api/v1", tags=["Health"])
    app.include_router(events_router, prefix="/api/v1/events", tags=["Events"])
    app.include_router(stats_router, prefix="/api/v1/stats", tags=["Stats"])
    if settings.monitoring.enable_metrics:
        app.include_router(metrics_router, tags=["Metrics"])

    @app.get("/api/v1/info")
    async def api_info():
        """API information endpoint."""
        return {
            "name": "Site Analytics API",
            "version": settings.version,
            "environment": settings.app_env,
            "documentation": "/docs",
        }

    return app
