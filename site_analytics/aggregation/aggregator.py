"""
Batch Aggregator

Drains a bounded batch of unprocessed queue entries per pass:

1. select (or atomically claim) up to ``batch_size`` entries, oldest first
2. write one canonical event per entry in a single batch insert
3. mark the entries processed
4. fold them into per-(site, UTC day) rollups and upsert those

Steps 1 and 2 are critical: a store failure aborts the pass and is raised
to the caller. Steps 3 and 4 are best-effort: failures are logged and the
pass still succeeds. A failure in step 3 leaves entries that already reached
the canonical table unprocessed, so the next pass folds them again.
"""

from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional
import time
import uuid

import structlog
from pydantic import BaseModel, Field

from site_analytics.aggregation.rollup import build_rollup_row, fold_entries
from site_analytics.config import RollupMode, get_settings
from site_analytics.database.models import utcnow
from site_analytics.errors import PartialFailure, StoreError
from site_analytics.metrics import (
    AGGREGATION_PASS_TIME,
    AGGREGATION_STEP_FAILURES,
    QUEUE_ENTRIES_PROCESSED,
)
from site_analytics.store.base import DAILY_STATS_TABLE, EVENTS_TABLE, QUEUE_TABLE, EventStore

logger = structlog.get_logger(__name__)

EMPTY_QUEUE_MESSAGE = "No events in queue"

SitesCallback = Callable[[List[str]], Awaitable[Any]]


class AggregationResult(BaseModel):
    """Result of one aggregator pass"""
    processed: int = 0
    aggregated_days: int = 0
    message: Optional[str] = None
    sites: List[str] = Field(default_factory=list)
    marked_processed: bool = True
    failed_days: int = 0
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: float = 0

    def to_response(self) -> Dict[str, Any]:
        """Wire shape of a successful pass"""
        if self.processed == 0:
            return {"success": True, "processed": 0, "message": self.message or EMPTY_QUEUE_MESSAGE}
        return {
            "success": True,
            "processed": self.processed,
            "aggregated_days": self.aggregated_days,
        }


def to_canonical_event(entry: Mapping[str, Any], now: datetime) -> Dict[str, Any]:
    """Canonical events row derived from a queue entry"""
    return {
        "id": uuid.uuid4(),
        "queue_entry_id": entry["id"],
        "site_id": entry["site_id"],
        "event_type": entry["event_type"],
        "path": entry["path"],
        "user_id": entry["user_id"],
        "timestamp": entry["timestamp"],
        "created_at": now,
    }


class BatchAggregator:
    """
    Folds queued events into canonical events and daily rollups.

    Stateless between passes; every call to :meth:`run` is independent.

    Example:
        aggregator = BatchAggregator(store)
        result = await aggregator.run()
        print(result.processed, result.aggregated_days)
    """

    def __init__(
        self,
        store: EventStore,
        batch_size: int = 1000,
        rollup_mode: RollupMode = RollupMode.MERGE,
        use_claims: bool = True,
        claim_lease_seconds: int = 300,
        on_sites_updated: Optional[SitesCallback] = None,
    ):
        self.store = store
        self.batch_size = batch_size
        self.rollup_mode = RollupMode(rollup_mode)
        self.use_claims = use_claims
        self.claim_lease_seconds = claim_lease_seconds
        self.on_sites_updated = on_sites_updated

    async def _select_batch(self) -> List[Dict[str, Any]]:
        if self.use_claims:
            return await self.store.claim(QUEUE_TABLE, self.batch_size, self.claim_lease_seconds)
        return await self.store.select(
            QUEUE_TABLE,
            {"processed": False},
            order_by="created_at",
            limit=self.batch_size,
        )

    async def _release_claims(self, ids: List[Any]) -> None:
        """Hand claimed entries back so the next pass can retry them at once"""
        try:
            await self.store.update(QUEUE_TABLE, {"claim_token": None, "claimed_at": None}, {"id": ids})
        except StoreError as e:
            logger.warning("Failed to release claims, they will expire", error=str(e), entries=len(ids))

    async def _mark_processed(self, ids: List[Any]) -> bool:
        try:
            await self.store.update(QUEUE_TABLE, {"processed": True}, {"id": ids})
            return True
        except StoreError as e:
            failure = PartialFailure(
                "Canonical events written but queue entries not marked processed",
                completed_step="insert_events",
                failed_step="mark_processed",
                cause=e,
            )
            AGGREGATION_STEP_FAILURES.labels(step=failure.failed_step).inc()
            logger.error(
                failure.message,
                error=str(e),
                entries=len(ids),
                completed_step=failure.completed_step,
                failed_step=failure.failed_step,
            )
            return False

    async def _upsert_day(self, accumulator, now: datetime) -> bool:
        key = {"site_id": accumulator.site_id, "date": accumulator.date}
        try:
            if self.rollup_mode == RollupMode.MERGE:
                # existing row is read and rewritten under one lock so overlapping passes add up
                await self.store.merge_upsert(
                    DAILY_STATS_TABLE,
                    key,
                    lambda existing: build_rollup_row(accumulator, existing, RollupMode.MERGE, now),
                )
            else:
                row = build_rollup_row(accumulator, None, self.rollup_mode, now)
                await self.store.upsert(DAILY_STATS_TABLE, row, conflict_keys=tuple(key))
            return True
        except StoreError as e:
            AGGREGATION_STEP_FAILURES.labels(step="upsert_rollup").inc()
            logger.error(
                "Error upserting daily stats",
                site_id=accumulator.site_id,
                date=accumulator.date.isoformat(),
                error=str(e),
            )
            return False

    async def run(self) -> AggregationResult:
        """
        Execute one aggregation pass.

        Returns:
            AggregationResult for the pass

        Raises:
            StoreError: if the initial select or the canonical insert fails
        """
        start = time.perf_counter()
        result = AggregationResult(started_at=utcnow())
        outcome = "failed"

        try:
            logger.info("Starting event processing", batch_size=self.batch_size, claims=self.use_claims)

            entries = await self._select_batch()
            if not entries:
                logger.info("No events to process")
                result.message = EMPTY_QUEUE_MESSAGE
                outcome = "empty"
                return result

            ids = [entry["id"] for entry in entries]
            logger.info("Processing events", count=len(entries))

            now = utcnow()
            try:
                await self.store.insert(EVENTS_TABLE, [to_canonical_event(entry, now) for entry in entries])
            except StoreError:
                if self.use_claims:
                    await self._release_claims(ids)
                raise

            result.processed = len(entries)
            QUEUE_ENTRIES_PROCESSED.inc(len(entries))

            result.marked_processed = await self._mark_processed(ids)

            groups = fold_entries(entries)
            fold_time = utcnow()
            for accumulator in groups.values():
                if not await self._upsert_day(accumulator, fold_time):
                    result.failed_days += 1

            result.aggregated_days = len(groups)
            result.sites = sorted({site_id for site_id, _ in groups})

            if self.on_sites_updated is not None and result.sites:
                try:
                    await self.on_sites_updated(result.sites)
                except Exception as e:
                    logger.warning("Sites-updated hook failed", error=str(e), sites=result.sites)

            outcome = "partial" if (not result.marked_processed or result.failed_days) else "success"
            logger.info(
                "Successfully processed events",
                processed=result.processed,
                aggregated_days=result.aggregated_days,
                failed_days=result.failed_days,
                marked_processed=result.marked_processed,
            )
            return result
        finally:
            duration = time.perf_counter() - start
            result.completed_at = utcnow()
            result.duration_seconds = round(duration, 4)
            AGGREGATION_PASS_TIME.labels(outcome=outcome).observe(duration)

    async def drain(self, max_passes: int = 20) -> List[AggregationResult]:
        """
        Run passes until the queue yields less than a full batch.

        Args:
            max_passes: Upper bound on passes in one drain

        Returns:
            Results of every pass that ran
        """
        results = []
        for _ in range(max_passes):
            result = await self.run()
            results.append(result)
            if result.processed < self.batch_size:
                break

        logger.info(
            "Queue drain completed",
            passes=len(results),
            processed=sum(r.processed for r in results),
        )
        return results


def create_aggregator(store: EventStore, on_sites_updated: Optional[SitesCallback] = None) -> BatchAggregator:
    """Create a BatchAggregator configured from settings"""
    settings = get_settings().aggregation
    return BatchAggregator(
        store,
        batch_size=settings.batch_size,
        rollup_mode=settings.rollup_mode,
        use_claims=settings.use_claims,
        claim_lease_seconds=settings.claim_lease_seconds,
        on_sites_updated=on_sites_updated,
    )
