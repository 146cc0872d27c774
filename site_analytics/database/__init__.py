"""
Database Module
"""
from .connection import (
    init_database,
    close_database,
    create_tables,
    get_engine,
    build_engine,
    build_session_factory,
    check_database_health,
)
from .models import Base, EventQueueEntry, Event, DailyStat

__all__ = [
    "init_database",
    "close_database",
    "create_tables",
    "get_engine",
    "build_engine",
    "build_session_factory",
    "check_database_health",
    "Base",
    "EventQueueEntry",
    "Event",
    "DailyStat",
]
