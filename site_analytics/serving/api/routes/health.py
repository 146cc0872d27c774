"""
Health Check Endpoints

Provides health and readiness checks for orchestration systems.
"""

from datetime import datetime
from typing import Dict, Any

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel

from site_analytics.config import get_settings
from site_analytics.database.models import utcnow
from site_analytics.serving.api.dependencies import get_store
from site_analytics.store.base import EventStore

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    version: str
    environment: str
    timestamp: datetime
    checks: Dict[str, Any]


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request, store: EventStore = Depends(get_store)) -> HealthResponse:
    """
    Comprehensive health check endpoint.

    Checks:
    - Event store connectivity
    - Stats cache connectivity (when enabled)
    """
    settings = get_settings()
    checks = {}
    overall_status = "healthy"

    store_health = await store.health()
    checks["store"] = store_health
    if store_health.get("status") != "healthy":
        overall_status = "unhealthy"

    cache = request.app.state.stats.cache
    if cache.enabled:
        try:
            await cache.client.ping()
            checks["redis"] = {"status": "healthy"}
        except Exception as e:
            checks["redis"] = {"status": "unhealthy", "error": str(e)}
            if overall_status == "healthy":
                overall_status = "degraded"

    checks["ingestion"] = {"pending_enqueues": request.app.state.ingestion.pending_count}

    return HealthResponse(
        status=overall_status,
        version=settings.version,
        environment=settings.app_env,
        timestamp=utcnow(),
        checks=checks,
    )


@router.get("/health/live")
async def liveness_check() -> Dict[str, str]:
    """
    Kubernetes liveness probe endpoint.

    Returns 200 if the application is running.
    """
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_check(response: Response, store: EventStore = Depends(get_store)) -> Dict[str, str]:
    """
    Kubernetes readiness probe endpoint.

    Returns 200 if the event store is reachable.
    """
    store_health = await store.health()
    if store_health.get("status") != "healthy":
        response.status_code = 503
        return {"status": "not_ready", "reason": "store_unavailable"}
    return {"status": "ready"}
