"""
Command-line queue drain

Runs aggregator passes until the queue is drained (or ``--max-passes`` is
reached) and prints a JSON summary. Usable from cron or a container job:

    site-analytics-process --max-passes 10
"""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

import structlog
from redis.exceptions import RedisError

from site_analytics.aggregation.aggregator import AggregationResult, create_aggregator
from site_analytics.config import get_settings
from site_analytics.config.logging import configure_logging
from site_analytics.database.connection import close_database, create_tables, init_database
from site_analytics.errors import StoreError
from site_analytics.serving.cache import StatsCache, close_redis, init_redis
from site_analytics.store.sql import SQLEventStore

logger = structlog.get_logger(__name__)


async def drain_queue(
    max_passes: Optional[int] = None,
    database_url: Optional[str] = None,
    ensure_tables: bool = False,
) -> List[AggregationResult]:
    """
    Open the store, drain the queue, close the store.

    Args:
        max_passes: Bound on passes; defaults to the configured value
        database_url: Override the configured database URL
        ensure_tables: Create missing tables first

    Returns:
        One AggregationResult per pass
    """
    settings = get_settings()
    engine = await init_database(database_url)
    cache = StatsCache()
    try:
        if ensure_tables:
            await create_tables(engine)
        if settings.redis.enabled:
            try:
                cache = StatsCache(await init_redis(), ttl=settings.redis.stats_ttl_seconds)
            except RedisError as e:
                logger.warning("Redis unavailable, cached stats will expire by TTL", error=str(e))

        aggregator = create_aggregator(
            SQLEventStore(engine),
            on_sites_updated=cache.invalidate_sites if cache.enabled else None,
        )
        return await aggregator.drain(max_passes or settings.aggregation.max_passes)
    finally:
        if cache.enabled:
            await close_redis()
        await close_database()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Drain the event queue into daily rollups")
    parser.add_argument(
        "--max-passes",
        type=int,
        default=None,
        help="Maximum aggregator passes (default: AGGREGATION_MAX_PASSES)",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy async URL (default: from DATABASE_* settings)",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables before processing",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        results = asyncio.run(
            drain_queue(
                max_passes=args.max_passes,
                database_url=args.database_url,
                ensure_tables=args.create_tables,
            )
        )
    except StoreError as e:
        print(json.dumps({"success": False, "error": e.message}))
        return 1

    print(json.dumps({
        "success": True,
        "passes": len(results),
        "processed": sum(r.processed for r in results),
        "aggregated_days": sum(r.aggregated_days for r in results),
    }))
    return 0


if __name__ == "__main__":
    sys.exit(main())
