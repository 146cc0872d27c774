"""
Serving Module
"""
from .cache import init_redis, close_redis, StatsCache
from .stats import StatsService

__all__ = [
    "init_redis",
    "close_redis",
    "StatsCache",
    "StatsService",
]
