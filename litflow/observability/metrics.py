"""Prometheus metrics definitions for the extraction workflow.

Defines counters, gauges, and histograms for monitoring:
- Paper save throughput (saved, failed, skipped)
- Full-text fetch outcomes and latency
- Retry and circuit breaker behaviour
- Workflow runs and per-stage durations

Usage:
    from litflow.observability.metrics import (
        PAPER_SAVES,
        STAGE_DURATION,
    )

    # Increment counter
    PAPER_SAVES.labels(status="saved").inc()

    # Track histogram
    with STAGE_DURATION.labels(stage="fetch").time():
        await fulltext_service.extract_batch(id_map)
"""

from typing import Any, Optional
from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# Private registry so tests and embedding apps never collide with the default one
REGISTRY = CollectorRegistry(auto_describe=True)

# =============================================================================
# COUNTERS - Monotonically increasing values
# =============================================================================

PAPER_SAVES = Counter(
    name="litflow_paper_saves_total",
    documentation="Paper save outcomes",
    labelnames=["status"],  # saved, failed, skipped
    registry=REGISTRY,
)

FULLTEXT_FETCHES = Counter(
    name="litflow_fulltext_fetches_total",
    documentation="Full-text fetch outcomes",
    labelnames=["status"],  # success, failed
    registry=REGISTRY,
)

RETRY_ATTEMPTS = Counter(
    name="litflow_retry_attempts_total",
    documentation="Retries scheduled after a failed attempt",
    labelnames=["error_type"],
    registry=REGISTRY,
)

CIRCUIT_BREAKER_REJECTIONS = Counter(
    name="litflow_circuit_breaker_rejections_total",
    documentation="Calls rejected without invoking the operation",
    labelnames=["breaker"],
    registry=REGISTRY,
)

CIRCUIT_BREAKER_TRANSITIONS = Counter(
    name="litflow_circuit_breaker_transitions_total",
    documentation="Circuit breaker state transitions",
    labelnames=["breaker", "to_state"],  # closed, open, half_open
    registry=REGISTRY,
)

SOURCES_PREPARED = Counter(
    name="litflow_sources_prepared_total",
    documentation="Prepared sources by content type",
    labelnames=["content_type"],  # full_text, abstract_overflow, abstract, none
    registry=REGISTRY,
)

WORKFLOW_RUNS = Counter(
    name="litflow_workflow_runs_total",
    documentation="Workflow runs by final status",
    labelnames=["status"],  # success, failed, cancelled, timeout, rejected
    registry=REGISTRY,
)

# =============================================================================
# GAUGES - Values that can go up and down
# =============================================================================

CIRCUIT_BREAKER_STATE = Gauge(
    name="litflow_circuit_breaker_state",
    documentation="Circuit breaker state (0=closed, 1=half_open, 2=open)",
    labelnames=["breaker"],
    registry=REGISTRY,
)

FULLTEXT_IN_FLIGHT = Gauge(
    name="litflow_fulltext_in_flight",
    documentation="Full-text fetches currently awaiting a response",
    registry=REGISTRY,
)

# =============================================================================
# HISTOGRAMS - Distribution of values
# =============================================================================

STAGE_BUCKETS = (0.1, 0.5, 1, 2, 5, 10, 30, 60, 120, 300, 600, float("inf"))

STAGE_DURATION = Histogram(
    name="litflow_stage_duration_seconds",
    documentation="Workflow stage duration in seconds",
    labelnames=["stage"],  # save, fetch, prepare, extract
    buckets=STAGE_BUCKETS,
    registry=REGISTRY,
)

ITEM_DURATION = Histogram(
    name="litflow_item_duration_seconds",
    documentation="Per-item save or fetch duration in seconds",
    labelnames=["operation"],  # save, fetch
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60, float("inf")),
    registry=REGISTRY,
)


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def get_metrics_text() -> bytes:
    """Generate Prometheus metrics in text format.

    Returns:
        UTF-8 encoded metrics in Prometheus exposition format.
    """
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics response."""
    return CONTENT_TYPE_LATEST


def get_sample(name: str, **labels: str) -> float:
    """Read the current value of a sample from the private registry.

    Unknown samples read as 0.0, which keeps before/after deltas simple.
    """
    value = REGISTRY.get_sample_value(name, labels)
    return value if value is not None else 0.0


class MetricsContext:
    """Context manager for timing operations and updating metrics.

    Combines histogram timing with counter updates for common patterns.

    Example:
        with MetricsContext(
            histogram=STAGE_DURATION.labels(stage="save"),
            success_counter=WORKFLOW_RUNS.labels(status="success"),
            failure_counter=WORKFLOW_RUNS.labels(status="failed"),
        ) as ctx:
            await run()
            ctx.mark_success()
    """

    def __init__(
        self,
        histogram: Optional[Histogram] = None,
        success_counter: Optional[Counter] = None,
        failure_counter: Optional[Counter] = None,
    ):
        self._histogram = histogram
        self._success_counter = success_counter
        self._failure_counter = failure_counter
        self._timer: Any = None
        self._success = False

    def __enter__(self) -> "MetricsContext":
        """Start timing."""
        if self._histogram:
            self._timer = self._histogram.time()
            self._timer.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Stop timing and update counters."""
        if self._timer:
            self._timer.__exit__(exc_type, exc_val, exc_tb)

        # Unmarked exits count as failures
        if exc_type is None and self._success:
            if self._success_counter:
                self._success_counter.inc()
        elif self._failure_counter:
            self._failure_counter.inc()

    def mark_success(self) -> None:
        """Mark the operation as successful.

        Must be called before exiting the context to register success.
        """
        self._success = True
