"""
Event Pipeline Endpoints

- POST /events: accept one event and enqueue it in the background
- POST /events/process: run one aggregator pass
- GET /events/queue: queue backlog status
"""

import json
import time
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
import structlog

from site_analytics.aggregation.aggregator import BatchAggregator
from site_analytics.errors import PipelineError, StoreError, ValidationError
from site_analytics.ingestion.service import INVALID_FORMAT_MESSAGE, IngestionService
from site_analytics.serving.api.dependencies import get_aggregator, get_ingestion_service, get_store
from site_analytics.store.base import QUEUE_TABLE, EventStore

router = APIRouter()
logger = structlog.get_logger(__name__)


class IngestResponse(BaseModel):
    """Ingest acknowledgement"""
    success: bool
    queued: bool
    response_time_ms: float


class QueueStatus(BaseModel):
    """Queue backlog"""
    pending: int
    last_processed_at: Optional[datetime]


@router.post("", status_code=status.HTTP_202_ACCEPTED, response_model=IngestResponse)
async def ingest_event(
    request: Request,
    ingestion: IngestionService = Depends(get_ingestion_service),
):
    """
    Accept one event.

    Responds 202 as soon as the event is validated and its queue insert is
    scheduled; the insert itself is not awaited.
    """
    started_at = getattr(request.state, "started_at", None) or time.perf_counter()

    try:
        payload = json.loads(await request.body())
    except ValueError:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "error": INVALID_FORMAT_MESSAGE},
        )

    try:
        return await ingestion.accept(payload, started_at=started_at)
    except ValidationError as e:
        logger.info("Rejected event", error=e.message)
        return JSONResponse(
            status_code=e.status_code,
            content={"success": False, "error": e.message},
        )


@router.post("/process")
async def process_events(aggregator: BatchAggregator = Depends(get_aggregator)):
    """Run one aggregation pass over the oldest unprocessed events"""
    try:
        result = await aggregator.run()
    except StoreError as e:
        logger.error("Error in process-events", error=e.message, operation=e.operation)
        return JSONResponse(
            status_code=e.status_code,
            content={"success": False, "error": e.message},
        )
    except PipelineError as e:
        logger.error("Error in process-events", error=e.message)
        return JSONResponse(
            status_code=e.status_code,
            content={"success": False, "error": e.message},
        )
    except Exception as e:
        logger.exception("Unexpected error in process-events")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": str(e)},
        )
    return result.to_response()


@router.get("/queue", response_model=QueueStatus)
async def queue_status(store: EventStore = Depends(get_store)):
    """Number of unprocessed events and when the newest processed one was queued"""
    try:
        pending = await store.count(QUEUE_TABLE, {"processed": False})
        latest = await store.select(
            QUEUE_TABLE,
            {"processed": True},
            order_by="created_at",
            descending=True,
            limit=1,
        )
    except StoreError as e:
        return JSONResponse(status_code=e.status_code, content={"error": e.message})

    return QueueStatus(
        pending=pending,
        last_processed_at=latest[0]["created_at"] if latest else None,
    )
