"""
Event Ingestion

Accept-and-enqueue path. A valid event is answered immediately; the queue
insert runs as a detached asyncio task whose outcome only reaches the logs.
A failed insert is never reported to the caller, who has already been told
the event was queued.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Set
import time
import uuid

import structlog
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import ValidationError as PydanticValidationError

from site_analytics.database.models import utcnow
from site_analytics.errors import StoreError, ValidationError
from site_analytics.metrics import ENQUEUE_RESULTS, EVENTS_ACCEPTED, INGEST_LATENCY
from site_analytics.store.base import QUEUE_TABLE, EventStore

logger = structlog.get_logger(__name__)

INVALID_FORMAT_MESSAGE = "Invalid request format"
MISSING_FIELDS_MESSAGE = "Missing required fields: site_id and event_type are required"

DEFAULT_PATH = "/"
DEFAULT_USER_ID = "anonymous"


class EventPayload(BaseModel):
    """Ingest request body. Required fields are checked by the service."""

    model_config = ConfigDict(extra="ignore")

    site_id: Optional[str] = None
    event_type: Optional[str] = None
    path: Optional[str] = None
    user_id: Optional[str] = None
    timestamp: Optional[datetime] = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def blank_timestamp_is_absent(cls, value):
        """An empty timestamp means the enqueue time, same as a missing one"""
        if isinstance(value, str) and not value.strip():
            return None
        return value


class IngestionService:
    """
    Validates events and schedules their queue insert in the background.

    Scheduled tasks are referenced from ``_pending`` until they finish so
    the event loop cannot collect them mid-flight; :meth:`drain` waits for
    whatever is still running (used on shutdown).
    """

    def __init__(self, store: EventStore):
        self.store = store
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def validate(self, payload: Any) -> EventPayload:
        """
        Parse and validate an ingest payload.

        Raises:
            ValidationError: malformed body or missing site_id/event_type
        """
        if not isinstance(payload, Mapping):
            raise ValidationError(INVALID_FORMAT_MESSAGE)
        try:
            event = EventPayload.model_validate(payload)
        except PydanticValidationError as e:
            logger.debug("Rejected malformed event", errors=e.errors())
            raise ValidationError(INVALID_FORMAT_MESSAGE) from e

        if not event.site_id or not event.event_type:
            raise ValidationError(MISSING_FIELDS_MESSAGE)
        return event

    @staticmethod
    def build_entry(event: EventPayload, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Queue row for a validated event, with defaults applied"""
        now = now or utcnow()
        timestamp = event.timestamp or now
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return {
            "id": uuid.uuid4(),
            "site_id": event.site_id,
            "event_type": event.event_type,
            "path": event.path or DEFAULT_PATH,
            "user_id": event.user_id or DEFAULT_USER_ID,
            "timestamp": timestamp,
            "processed": False,
            "created_at": now,
        }

    async def _enqueue(self, entry: Dict[str, Any]) -> None:
        try:
            await self.store.insert(QUEUE_TABLE, [entry])
        except StoreError as e:
            ENQUEUE_RESULTS.labels(status="failed").inc()
            logger.error(
                "Background: Error inserting event",
                entry_id=str(entry["id"]),
                site_id=entry["site_id"],
                error=str(e),
            )
            return
        except Exception:
            ENQUEUE_RESULTS.labels(status="failed").inc()
            logger.exception("Background: Exception in queue insert", entry_id=str(entry["id"]))
            return

        ENQUEUE_RESULTS.labels(status="queued").inc()
        logger.debug("Background: Event queued", entry_id=str(entry["id"]), site_id=entry["site_id"])

    def schedule(self, entry: Dict[str, Any]) -> asyncio.Task:
        """Start the queue insert without waiting for it"""
        task = asyncio.create_task(self._enqueue(entry))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def accept(self, payload: Any, started_at: Optional[float] = None) -> Dict[str, Any]:
        """
        Validate one event and schedule its enqueue.

        Args:
            payload: Decoded request body
            started_at: ``time.perf_counter()`` reading taken when the request began

        Returns:
            Response body for a 202

        Raises:
            ValidationError: if the payload is rejected
        """
        start = started_at if started_at is not None else time.perf_counter()

        event = self.validate(payload)
        entry = self.build_entry(event)
        self.schedule(entry)

        elapsed = time.perf_counter() - start
        EVENTS_ACCEPTED.inc()
        INGEST_LATENCY.observe(elapsed)

        return {
            "success": True,
            "queued": True,
            "response_time_ms": round(elapsed * 1000, 2),
        }

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight background inserts"""
        if not self._pending:
            return
        pending = list(self._pending)
        logger.info("Waiting for background enqueues", pending=len(pending))
        _, not_done = await asyncio.wait(pending, timeout=timeout)
        if not_done:
            logger.warning("Background enqueues still running after drain timeout", pending=len(not_done))
