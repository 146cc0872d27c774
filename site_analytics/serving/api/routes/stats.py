"""
Stats Endpoint

Pre-aggregated daily rollups for one site.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel
import structlog

from site_analytics.errors import PipelineError
from site_analytics.serving.api.dependencies import get_stats_service
from site_analytics.serving.stats import StatsService

router = APIRouter()
logger = structlog.get_logger(__name__)


class PathViews(BaseModel):
    """Views for one path"""
    path: str
    views: int


class StatsResponse(BaseModel):
    """Rollup for one day, or merged across all days"""
    site_id: str
    date: str
    total_views: int
    unique_users: int
    top_paths: List[PathViews]
    days_tracked: Optional[int] = None


@router.get("", response_model=StatsResponse, response_model_exclude_none=True)
async def get_stats(
    site_id: Optional[str] = Query(None, description="Site to report on"),
    date: Optional[str] = Query(None, description="Single day, YYYY-MM-DD; all days when omitted"),
    stats: StatsService = Depends(get_stats_service),
):
    """
    Get stats for a site.

    With ``date`` the single daily rollup is returned; without it every
    recorded day is merged and the top paths are ranked.
    """
    try:
        return await stats.get_stats(site_id, date)
    except PipelineError as e:
        if e.status_code >= 500:
            logger.error("Error fetching stats", site_id=site_id, error=e.message)
        return JSONResponse(status_code=e.status_code, content={"error": e.message})
