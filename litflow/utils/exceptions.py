"""Custom exceptions for the literature extraction workflow

This module defines the exception hierarchy for the workflow:
- Base exception for all workflow errors, carrying structured context
- Configuration and input validation errors (raised before any work starts)
- Cancellation and timeout errors (raised after in-flight work settles)
- Circuit breaker rejections

All exceptions inherit from WorkflowError so callers can catch every
workflow-related failure in a single except block and still report the
partial-progress counts found in ``error.context``.
"""

from typing import Any, Dict, Optional


class WorkflowError(Exception):
    """Base exception for all workflow errors

    Use this to catch any error raised by the orchestration layer:
    ```python
    try:
        await workflow.run_workflow(papers)
    except WorkflowError as e:
        logger.error("workflow_failed", error=str(e), **e.context)
    ```
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})


class ConfigurationError(WorkflowError):
    """Invalid configuration detected at construction time

    Raised when:
    - Retry policy has max_attempts <= 0 or non-positive delays
    - max_delay is lower than base_delay
    - Circuit breaker thresholds or reset timeout are not positive

    This is a programming error, never a runtime failure to retry.
    """

    pass


class InputValidationError(WorkflowError):
    """Caller supplied malformed input

    Raised when:
    - The id map handed to full-text extraction has empty or non-string keys/values
    """

    pass


class OperationCancelledError(WorkflowError):
    """The caller's cancellation token fired

    Raised when:
    - Cancellation is observed before a save batch starts
    - A full-text batch settles after the caller cancelled

    ``context`` holds the counts completed before cancellation.
    """

    pass


class CircuitOpenError(WorkflowError):
    """Circuit breaker is OPEN - dependency marked unavailable.

    Raised when:
    - A call is attempted while the breaker is OPEN and the reset timeout
      has not elapsed yet

    The wrapped operation is never invoked when this is raised.
    """

    def __init__(
        self,
        name: str,
        next_attempt_time: float,
        retry_after_seconds: float,
    ) -> None:
        super().__init__(
            f"Circuit breaker '{name}' is OPEN - service temporarily unavailable",
            context={
                "breaker": name,
                "retry_after_seconds": round(retry_after_seconds, 3),
            },
        )
        self.name = name
        self.next_attempt_time = next_attempt_time
        self.retry_after_seconds = retry_after_seconds


class ExtractionError(WorkflowError):
    """Full-text extraction failed

    Raised when:
    - A single paper's full-text fetch fails after all retry attempts
    - The batch-level timeout or cancellation fires
    """

    pass


class ExtractionTimeoutError(ExtractionError):
    """Full-text batch exceeded its deadline

    Raised only after every in-flight extraction has settled, with
    ``completed_before_timeout`` and ``timeout_seconds`` in the context.
    """

    @property
    def completed_before_timeout(self) -> int:
        return int(self.context.get("completed_before_timeout", 0))

    @property
    def timeout_seconds(self) -> float:
        return float(self.context.get("timeout_seconds", 0.0))


class ExtractionCancelledError(ExtractionError, OperationCancelledError):
    """Full-text batch cancelled by the caller"""

    pass


class SourceLimitExceededError(WorkflowError):
    """Too many sources for a single extraction run

    Raised when the prepared source count is above the hard limit.
    """

    pass


class NoUsableSourcesError(WorkflowError):
    """No selected paper has enough content to extract from"""

    pass
