"""
Prefect Workflow Orchestration - Scheduled Queue Drain

Runs the batch aggregator on a schedule with:
- Retries on store failures
- Per-pass logging to the Prefect run log
"""

from typing import Optional

from prefect import flow, task, get_run_logger

from site_analytics.cli import drain_queue
from site_analytics.config import get_settings

settings = get_settings()


@task(
    name="drain_event_queue",
    description="Fold queued events into canonical events and daily rollups",
    retries=2,
    retry_delay_seconds=30,
)
async def drain_event_queue(max_passes: int) -> dict:
    """Drain the queue and summarize the passes"""
    logger = get_run_logger()

    results = await drain_queue(max_passes=max_passes)

    for number, result in enumerate(results, start=1):
        logger.info(
            f"Pass {number}: processed={result.processed} "
            f"aggregated_days={result.aggregated_days} failed_days={result.failed_days}"
        )

    return {
        "passes": len(results),
        "processed": sum(r.processed for r in results),
        "aggregated_days": sum(r.aggregated_days for r in results),
        "partial_passes": sum(1 for r in results if not r.marked_processed or r.failed_days),
    }


@flow(
    name="process_events",
    description="Scheduled drain of the event queue into daily rollups",
)
async def process_events_flow(max_passes: Optional[int] = None) -> dict:
    """Scheduled aggregation flow"""
    logger = get_run_logger()

    summary = await drain_event_queue(max_passes or settings.aggregation.max_passes)

    logger.info(
        f"Queue drain complete: {summary['processed']} events in {summary['passes']} passes"
    )
    return summary


# =============================================================================
# DEPLOYMENT CONFIGURATION
# =============================================================================

if __name__ == "__main__":
    process_events_flow.serve(
        name="process-events",
        interval=settings.aggregation.schedule_interval_seconds,
    )
