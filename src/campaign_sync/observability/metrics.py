"""
Prometheus metrics for campaign-sync

All metrics live on a dedicated registry, exposed by the API at /metrics.
"""
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Global registry for metrics
REGISTRY = CollectorRegistry()


# =======================
# SYNC RUN METRICS
# =======================

sync_runs_total = Counter(
    name="campaign_sync_runs_total",
    documentation="Total number of completed sync runs",
    labelnames=["source", "outcome"],  # outcome: success, failed, partial
    registry=REGISTRY,
)

sync_run_duration_seconds = Histogram(
    name="campaign_sync_run_duration_seconds",
    documentation="Wall-clock duration of sync runs in seconds",
    labelnames=["source"],
    buckets=[1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0],
    registry=REGISTRY,
)

sync_runs_in_progress = Gauge(
    name="campaign_sync_runs_in_progress",
    documentation="Sync runs currently holding the single-flight lease (0 or 1)",
    labelnames=["source"],
    registry=REGISTRY,
)

sync_conflicts_total = Counter(
    name="campaign_sync_conflicts_total",
    documentation="Triggers rejected because a sync for the source was already running",
    labelnames=["source"],
    registry=REGISTRY,
)

sync_units_total = Counter(
    name="campaign_sync_units_total",
    documentation="Work units (files or tenants) processed",
    labelnames=["source", "status"],  # status: completed, failed, skipped
    registry=REGISTRY,
)

# =======================
# RECORD METRICS
# =======================

records_merged_total = Counter(
    name="campaign_sync_records_merged_total",
    documentation="Records upserted into the canonical store",
    labelnames=["source"],
    registry=REGISTRY,
)

records_rejected_total = Counter(
    name="campaign_sync_records_rejected_total",
    documentation="Raw records rejected by the normalizer",
    labelnames=["source", "field"],
    registry=REGISTRY,
)

merge_duration_seconds = Histogram(
    name="campaign_sync_merge_duration_seconds",
    documentation="Time spent merging one campaign batch",
    labelnames=["source"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0],
    registry=REGISTRY,
)

# =======================
# SOURCE METRICS
# =======================

source_fetch_duration_seconds = Histogram(
    name="campaign_sync_source_fetch_duration_seconds",
    documentation="Duration of adapter fetch calls",
    labelnames=["source"],
    buckets=[0.1, 0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 120.0],
    registry=REGISTRY,
)

source_errors_total = Counter(
    name="campaign_sync_source_errors_total",
    documentation="Adapter failures by type",
    labelnames=["source", "error_type"],  # error_type: timeout, source, configuration
    registry=REGISTRY,
)

# =======================
# ROLLUP METRICS
# =======================

rollup_query_duration_seconds = Histogram(
    name="campaign_sync_rollup_query_duration_seconds",
    documentation="Duration of rollup queries",
    labelnames=["level"],  # level: tenant, campaign, record
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=REGISTRY,
)


# =======================
# HELPER FUNCTIONS
# =======================

def generate_metrics() -> bytes:
    """
    Generate Prometheus metrics in text format

    Returns:
        Metrics in Prometheus text format
    """
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    """Content type for Prometheus metrics"""
    return CONTENT_TYPE_LATEST


class track_duration:
    """
    Context manager for tracking operation duration

    Usage:
        with track_duration(source_fetch_duration_seconds, source="bulk_file"):
            # do work
            pass
    """

    def __init__(self, histogram: Histogram, **labels):
        self.histogram = histogram
        self.labels = labels
        self.timer = None

    def __enter__(self):
        self.timer = self.histogram.labels(**self.labels).time()
        self.timer.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.timer.__exit__(exc_type, exc_val, exc_tb)
        return False


def increment_counter(counter: Counter, value: float = 1.0, **labels) -> None:
    """
    Increment a counter metric

    Args:
        counter: Prometheus Counter metric
        value: Amount to increment (default: 1.0)
        **labels: Label values for the metric
    """
    if value > 0:
        counter.labels(**labels).inc(value)


def set_gauge(gauge: Gauge, value: float, **labels) -> None:
    """Set a gauge metric value"""
    gauge.labels(**labels).set(value)


def observe_histogram(histogram: Histogram, value: float, **labels) -> None:
    """Observe a value in a histogram metric"""
    histogram.labels(**labels).observe(value)


def record_sync_run(
    source: str,
    outcome: str,
    duration_seconds: float,
    units_completed: int,
    units_failed: int,
    records_merged: int,
) -> None:
    """
    Record the metrics of a finished sync run.

    Args:
        source: Source tag
        outcome: success, failed or partial
        duration_seconds: Run duration
        units_completed: Files or tenants processed successfully
        units_failed: Files or tenants that failed
        records_merged: Records upserted
    """
    increment_counter(sync_runs_total, 1, source=source, outcome=outcome)
    observe_histogram(sync_run_duration_seconds, duration_seconds, source=source)
    increment_counter(sync_units_total, units_completed, source=source, status="completed")
    increment_counter(sync_units_total, units_failed, source=source, status="failed")
    increment_counter(records_merged_total, records_merged, source=source)
