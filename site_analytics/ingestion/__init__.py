"""
Event Ingestion Module
"""
from .service import EventPayload, IngestionService

__all__ = [
    "EventPayload",
    "IngestionService",
]
