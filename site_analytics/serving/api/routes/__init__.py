"""
API Routes Module
"""
from .health import router as health_router
from .events import router as events_router
from .stats import router as stats_router
from .metrics import router as metrics_router

__all__ = [
    "health_router",
    "events_router",
    "stats_router",
    "metrics_router",
]
