"""
Prometheus Metrics

Counters and histograms for the ingestion and aggregation paths.
"""

from prometheus_client import Counter, Histogram

EVENTS_ACCEPTED = Counter(
    "site_analytics_events_accepted_total",
    "Events that passed validation and were scheduled for enqueue",
)

ENQUEUE_RESULTS = Counter(
    "site_analytics_enqueue_total",
    "Background queue inserts by outcome",
    ["status"],
)

INGEST_LATENCY = Histogram(
    "site_analytics_ingest_response_seconds",
    "Time from request start to response on the ingestion path",
    buckets=(0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1),
)

QUEUE_ENTRIES_PROCESSED = Counter(
    "site_analytics_queue_entries_processed_total",
    "Queue entries written to the canonical events table",
)

AGGREGATION_STEP_FAILURES = Counter(
    "site_analytics_aggregation_step_failures_total",
    "Best-effort aggregation steps that failed and were skipped",
    ["step"],
)

AGGREGATION_PASS_TIME = Histogram(
    "site_analytics_aggregation_pass_seconds",
    "Duration of aggregator passes",
    ["outcome"],
)
