"""Prometheus metrics (module-scope, registered once)."""

from prometheus_client import Counter, Gauge, Histogram

STAGE_REQUESTS_TOTAL = Counter(
    "samvaad_stage_requests_total",
    "Provider stage calls by outcome",
    labelnames=("stage", "result"),
)
STAGE_RETRIES_TOTAL = Counter(
    "samvaad_stage_retries_total",
    "Retries performed after a failed provider stage call",
    labelnames=("stage",),
)
STAGE_LATENCY_SECONDS = Histogram(
    "samvaad_stage_latency_seconds",
    "Wall-clock time of a single provider stage call (including retries)",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.0, 3.0, 5.0, 10.0, 30.0),
    labelnames=("stage",),
)
PIPELINE_OUTCOMES_TOTAL = Counter(
    "samvaad_pipeline_outcomes_total",
    "Pipeline runs by outcome (completed, partial, failed)",
    labelnames=("outcome",),
)
PIPELINE_DURATION_SECONDS = Histogram(
    "samvaad_pipeline_duration_seconds",
    "End-to-end pipeline processing time",
    buckets=(0.25, 0.5, 1.0, 2.0, 4.0, 8.0, 15.0, 30.0, 60.0),
)
OFFLINE_QUEUE_DEPTH = Gauge(
    "samvaad_offline_queue_depth",
    "Submissions waiting in the offline queue",
)
OFFLINE_DRAINS_TOTAL = Counter(
    "samvaad_offline_drains_total",
    "Offline queue drain passes",
)
CONNECTIVITY_ONLINE = Gauge(
    "samvaad_connectivity_online",
    "Whether the connectivity monitor reports online (1 = online)",
)
