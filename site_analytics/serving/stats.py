"""
Stats Query Service

Serves rollups for one site: a single day's row, or every recorded day
merged on the fly.
"""

from datetime import date
from typing import Any, Dict, List, Mapping, Optional

import structlog

from site_analytics.aggregation.rollup import rank_paths
from site_analytics.errors import ValidationError
from site_analytics.serving.cache import StatsCache
from site_analytics.store.base import DAILY_STATS_TABLE, EventStore

logger = structlog.get_logger(__name__)

ALL_DAYS = "all"


def parse_day(value: str) -> date:
    """Parse a YYYY-MM-DD query parameter"""
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid date '{value}', expected YYYY-MM-DD") from None


def empty_stats(site_id: str, scope: str) -> Dict[str, Any]:
    return {
        "site_id": site_id,
        "date": scope,
        "total_views": 0,
        "unique_users": 0,
        "top_paths": [],
    }


def merge_days(site_id: str, rows: List[Mapping[str, Any]], limit: int) -> Dict[str, Any]:
    """
    Combine daily rollup rows into one response.

    total_views and unique_users are plain sums over the rows, so a user
    active on several days is counted once per day. Path views are summed
    per path and ranked, ties keeping first-encountered order.
    """
    paths: Dict[str, int] = {}
    for row in rows:
        for stat in row.get("path_stats") or []:
            paths[stat["path"]] = paths.get(stat["path"], 0) + int(stat["views"])

    return {
        "site_id": site_id,
        "date": ALL_DAYS,
        "days_tracked": len(rows),
        "total_views": sum(int(row["total_views"]) for row in rows),
        "unique_users": sum(int(row["unique_users"]) for row in rows),
        "top_paths": rank_paths(paths, limit=limit),
    }


class StatsService:
    """
    Reads daily rollups for a site.

    Store failures propagate as StoreError with the store's message.
    """

    def __init__(self, store: EventStore, top_paths_limit: int = 10, cache: Optional[StatsCache] = None):
        self.store = store
        self.top_paths_limit = top_paths_limit
        self.cache = cache or StatsCache()

    async def _day(self, site_id: str, day: date) -> Dict[str, Any]:
        rows = await self.store.select(DAILY_STATS_TABLE, {"site_id": site_id, "date": day}, limit=1)
        if not rows:
            return empty_stats(site_id, day.isoformat())
        row = rows[0]
        return {
            "site_id": site_id,
            "date": row["date"].isoformat(),
            "total_views": row["total_views"],
            "unique_users": row["unique_users"],
            "top_paths": row["path_stats"] or [],
        }

    async def _all_days(self, site_id: str) -> Dict[str, Any]:
        rows = await self.store.select(
            DAILY_STATS_TABLE,
            {"site_id": site_id},
            order_by="date",
            descending=True,
        )
        if not rows:
            return empty_stats(site_id, ALL_DAYS)
        return merge_days(site_id, rows, self.top_paths_limit)

    async def get_stats(self, site_id: Optional[str], day: Optional[str] = None) -> Dict[str, Any]:
        """
        Stats for one site.

        Args:
            site_id: Site to report on (required)
            day: Optional YYYY-MM-DD; all days are merged when omitted

        Raises:
            ValidationError: missing site_id or malformed date
            StoreError: the store read failed
        """
        if not site_id:
            raise ValidationError("Missing required parameter: site_id")

        parsed = parse_day(day) if day else None
        scope = parsed.isoformat() if parsed else ALL_DAYS

        cached = await self.cache.get(site_id, scope)
        if cached is not None:
            logger.debug("Returning cached stats", site_id=site_id, scope=scope)
            return cached

        if parsed is not None:
            stats = await self._day(site_id, parsed)
        else:
            stats = await self._all_days(site_id)

        await self.cache.set(site_id, scope, stats)
        return stats
