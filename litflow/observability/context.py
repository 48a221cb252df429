"""Correlation ID context management for workflow run tracing.

Provides ContextVar-based storage for correlation IDs that propagate
automatically across async boundaries, so every task spawned during a
workflow run logs with the run's ID.

Usage:
    from litflow.observability.context import correlation_id_context

    with correlation_id_context("run-456"):
        # every log line here carries correlation_id="run-456"
        await workflow.run_workflow(papers)
    # Previous correlation ID is restored after context exits
"""

import uuid
from contextvars import ContextVar
from contextlib import contextmanager
from typing import Optional, Generator

_correlation_id_var: ContextVar[Optional[str]] = ContextVar(
    "correlation_id", default=None
)


def set_correlation_id(corr_id: Optional[str] = None) -> str:
    """Set the correlation ID for the current context.

    If no ID is provided, generates a new UUID v4.

    Args:
        corr_id: Optional correlation ID. If None, generates UUID.

    Returns:
        The correlation ID that was set (generated or provided).
    """
    if corr_id is None:
        corr_id = str(uuid.uuid4())

    _correlation_id_var.set(corr_id)
    return corr_id


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID, or None if not set."""
    return _correlation_id_var.get()


def clear_correlation_id() -> None:
    """Reset the correlation ID to None."""
    _correlation_id_var.set(None)


@contextmanager
def correlation_id_context(
    corr_id: Optional[str] = None,
) -> Generator[str, None, None]:
    """Context manager for scoped correlation IDs.

    Sets correlation ID on entry and restores previous value on exit.

    Args:
        corr_id: Optional correlation ID. If None, generates UUID.

    Yields:
        The correlation ID being used in this context.
    """
    if corr_id is None:
        corr_id = str(uuid.uuid4())

    token = _correlation_id_var.set(corr_id)

    try:
        yield corr_id
    finally:
        _correlation_id_var.reset(token)
