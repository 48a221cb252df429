"""Observability for the extraction workflow.

Provides:
- Correlation ID context management for run tracing
- Structured logging with context propagation
- Prometheus metrics for monitoring and alerting
- Per-run performance recording

Usage:
    from litflow.observability import (
        correlation_id_context,
        get_logger,
        PAPER_SAVES,
    )

    with correlation_id_context():
        logger = get_logger()
        logger.info("processing_started", paper_id="123")
        PAPER_SAVES.labels(status="saved").inc()
"""

from litflow.observability.context import (
    set_correlation_id,
    get_correlation_id,
    clear_correlation_id,
    correlation_id_context,
)
from litflow.observability.logging import (
    get_logger,
    configure_logging,
    add_correlation_id_processor,
)
from litflow.observability.metrics import (
    # Counters
    PAPER_SAVES,
    FULLTEXT_FETCHES,
    RETRY_ATTEMPTS,
    CIRCUIT_BREAKER_REJECTIONS,
    CIRCUIT_BREAKER_TRANSITIONS,
    SOURCES_PREPARED,
    WORKFLOW_RUNS,
    # Gauges
    CIRCUIT_BREAKER_STATE,
    FULLTEXT_IN_FLIGHT,
    # Histograms
    STAGE_DURATION,
    ITEM_DURATION,
    # Registry and utilities
    MetricsContext,
    get_metrics_text,
)
from litflow.observability.performance import PerformanceMetricsRecorder

__all__ = [
    # Context
    "set_correlation_id",
    "get_correlation_id",
    "clear_correlation_id",
    "correlation_id_context",
    # Logging
    "get_logger",
    "configure_logging",
    "add_correlation_id_processor",
    # Counters
    "PAPER_SAVES",
    "FULLTEXT_FETCHES",
    "RETRY_ATTEMPTS",
    "CIRCUIT_BREAKER_REJECTIONS",
    "CIRCUIT_BREAKER_TRANSITIONS",
    "SOURCES_PREPARED",
    "WORKFLOW_RUNS",
    # Gauges
    "CIRCUIT_BREAKER_STATE",
    "FULLTEXT_IN_FLIGHT",
    # Histograms
    "STAGE_DURATION",
    "ITEM_DURATION",
    # Utilities
    "MetricsContext",
    "get_metrics_text",
    "PerformanceMetricsRecorder",
]
