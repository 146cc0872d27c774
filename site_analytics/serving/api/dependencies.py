"""
FastAPI dependencies

Services are built once at startup and kept on ``app.state``.
"""

from fastapi import Request

from site_analytics.aggregation.aggregator import BatchAggregator
from site_analytics.ingestion.service import IngestionService
from site_analytics.serving.stats import StatsService
from site_analytics.store.base import EventStore


def get_store(request: Request) -> EventStore:
    return request.app.state.store


def get_ingestion_service(request: Request) -> IngestionService:
    return request.app.state.ingestion


def get_aggregator(request: Request) -> BatchAggregator:
    return request.app.state.aggregator


def get_stats_service(request: Request) -> StatsService:
    return request.app.state.stats
