"""
Redis Stats Cache

Optional read-through cache for stats responses:
- Connection pooling
- JSON serialization
- TTL management
- Per-site invalidation after an aggregator pass

Cache failures never fail a request; they are logged and the caller falls
back to the store.
"""

import json
from typing import Any, Iterable, Optional

import structlog
from redis.asyncio import Redis, ConnectionPool
from redis.exceptions import RedisError

from site_analytics.config import get_settings

logger = structlog.get_logger(__name__)

# Global Redis connection
_redis_pool: Optional[ConnectionPool] = None
_redis_client: Optional[Redis] = None


async def init_redis() -> Redis:
    """Initialize Redis connection pool"""
    global _redis_pool, _redis_client

    if _redis_client is not None:
        return _redis_client

    settings = get_settings()
    _redis_pool = ConnectionPool.from_url(
        settings.redis.get_url(),
        max_connections=settings.redis.max_connections,
        socket_timeout=settings.redis.socket_timeout,
        decode_responses=True,
    )

    _redis_client = Redis(connection_pool=_redis_pool)

    try:
        await _redis_client.ping()
        logger.info("Redis connection established")
    except RedisError as e:
        logger.error("Redis connection failed", error=str(e))
        await close_redis()
        raise

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection pool"""
    global _redis_pool, _redis_client

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None

    if _redis_pool is not None:
        await _redis_pool.disconnect()
        _redis_pool = None

    logger.info("Redis connection closed")


class StatsCache:
    """
    Stats response cache namespaced by site.

    Keys look like ``stats:<site_id>:<date|all>``. A ``None`` client turns
    every operation into a no-op.

    Example:
        cache = StatsCache(redis_client, ttl=300)
        await cache.set("s1", "all", response)
        response = await cache.get("s1", "all")
    """

    namespace = "stats"

    def __init__(self, client: Optional[Redis] = None, ttl: int = 300):
        self.client = client
        self.ttl = ttl

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def _key(self, site_id: str, scope: str) -> str:
        return f"{self.namespace}:{site_id}:{scope}"

    async def get(self, site_id: str, scope: str) -> Optional[Any]:
        """Cached response or None"""
        if self.client is None:
            return None
        try:
            value = await self.client.get(self._key(site_id, scope))
        except RedisError as e:
            logger.warning("Stats cache read failed", site_id=site_id, error=str(e))
            return None
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            logger.warning("Discarding undecodable cache entry", site_id=site_id, scope=scope)
            return None

    async def set(self, site_id: str, scope: str, value: Any) -> bool:
        """Store a response; returns True if written"""
        if self.client is None:
            return False
        try:
            serialized = json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            logger.warning("Failed to serialize value for cache", error=str(e))
            return False
        try:
            await self.client.setex(self._key(site_id, scope), self.ttl, serialized)
        except RedisError as e:
            logger.warning("Stats cache write failed", site_id=site_id, error=str(e))
            return False
        return True

    async def invalidate_sites(self, site_ids: Iterable[str]) -> int:
        """Drop every cached response for the given sites"""
        if self.client is None:
            return 0
        deleted = 0
        try:
            for site_id in site_ids:
                keys = [key async for key in self.client.scan_iter(match=self._key(site_id, "*"))]
                if keys:
                    deleted += await self.client.delete(*keys)
        except RedisError as e:
            logger.warning("Stats cache invalidation failed", error=str(e))
        if deleted:
            logger.debug("Invalidated cached stats", keys=deleted)
        return deleted
