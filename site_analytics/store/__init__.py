"""
Event Store Module
"""
from .base import EventStore, QUEUE_TABLE, EVENTS_TABLE, DAILY_STATS_TABLE
from .sql import SQLEventStore

__all__ = [
    "EventStore",
    "SQLEventStore",
    "QUEUE_TABLE",
    "EVENTS_TABLE",
    "DAILY_STATS_TABLE",
]
