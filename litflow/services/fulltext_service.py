"""Full-text extraction service: fetch enriched content for saved papers.

This service handles:
1. Input validation of the original → persisted ID map
2. One concurrent fetch per paper, each wrapped as retry(circuit_breaker(fetch))
3. A batch-level deadline implemented as a timeout cancellation token
4. Per-item progress with a rolling-window ETA

Every fetch settles before the batch returns or raises. The deadline only
flags that time ran out; in-flight calls are awaited, not abandoned.
"""

import asyncio
import time
from typing import Awaitable, Callable, Dict, List, Optional

import structlog

from litflow.models.config import FullTextConfig
from litflow.models.paper import FullTextStatus, PaperRecord
from litflow.models.workflow import (
    ExtractionBatchResult,
    ExtractionFailure,
    ExtractionOutcome,
    ExtractionProgress,
    ExtractionSuccess,
)
from litflow.observability.metrics import (
    FULLTEXT_FETCHES,
    FULLTEXT_IN_FLIGHT,
    ITEM_DURATION,
)
from litflow.observability.performance import PerformanceMetricsRecorder
from litflow.utils.cancellation import CancellationToken
from litflow.utils.circuit_breaker import CircuitBreaker
from litflow.utils.error_classifier import is_retryable_error
from litflow.utils.eta import ETAEstimator
from litflow.utils.exceptions import (
    ExtractionCancelledError,
    ExtractionTimeoutError,
    InputValidationError,
)
from litflow.utils.retry import RetryHandler, RetryPolicy

logger = structlog.get_logger()

FetchCallable = Callable[[str], Awaitable[PaperRecord]]
ExtractionProgressCallback = Callable[[ExtractionProgress], None]


def truncate_id(value: str, length: int = 8) -> str:
    """Shorten an ID for log output."""
    return value if len(value) <= length else f"{value[:length]}..."


class FullTextExtractionService:
    """Fetches full text for a batch of saved papers concurrently

    Owns one circuit breaker shared by every batch; each batch gets its own
    ETA estimator. Create one service per protected dependency.
    """

    def __init__(
        self,
        fetch: FetchCallable,
        config: Optional[FullTextConfig] = None,
        retry_handler: Optional[RetryHandler] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        recorder: Optional[PerformanceMetricsRecorder] = None,
    ) -> None:
        """Initialize full-text extraction service

        Args:
            fetch: Collaborator, ``fetch(persisted_id) -> PaperRecord``
            config: Timeout, retry, breaker and ETA settings
            retry_handler: Retry executor
            circuit_breaker: Breaker guarding ``fetch``
            recorder: Optional per-run performance recorder
        """
        self.config = config or FullTextConfig()
        self._fetch = fetch
        self.retry_handler = retry_handler or RetryHandler()
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            self.config.breaker_name, self.config.circuit_breaker
        )
        self.recorder = recorder

    @staticmethod
    def _validate_id_map(id_map: Dict[str, str]) -> None:
        if not isinstance(id_map, dict):
            raise InputValidationError(
                "id_map must be a mapping of original IDs to persisted IDs",
                context={"type": type(id_map).__name__},
            )
        for original_id, persisted_id in id_map.items():
            if not isinstance(original_id, str) or not original_id.strip():
                raise InputValidationError(
                    "id_map keys must be non-empty strings",
                    context={"key": repr(original_id)},
                )
            if not isinstance(persisted_id, str) or not persisted_id.strip():
                raise InputValidationError(
                    "id_map values must be non-empty strings",
                    context={"key": original_id, "value": repr(persisted_id)},
                )

    async def extract_batch(
        self,
        id_map: Dict[str, str],
        *,
        cancel_token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
        on_progress: Optional[ExtractionProgressCallback] = None,
    ) -> ExtractionBatchResult:
        """Fetch full text for every ID in ``id_map``

        Args:
            id_map: original ID → persisted ID
            cancel_token: Caller cancellation
            timeout: Batch deadline in seconds (defaults to config)
            on_progress: Called after every settled item

        Returns:
            ExtractionBatchResult where success_count + failed_count == total_count

        Raises:
            InputValidationError: Malformed id_map or non-positive timeout
            ExtractionCancelledError: Caller cancelled (after all items settle)
            ExtractionTimeoutError: Deadline passed (after all items settle)
        """
        self._validate_id_map(id_map)
        if not id_map:
            return ExtractionBatchResult()

        timeout_seconds = (
            timeout if timeout is not None else self.config.timeout_seconds
        )
        if timeout_seconds <= 0:
            raise InputValidationError(
                "timeout must be greater than 0",
                context={"timeout_seconds": timeout_seconds},
            )

        total = len(id_map)
        eta_estimator = ETAEstimator(config=self.config.eta)

        timeout_token = CancellationToken(name="fulltext_timeout")
        combined = CancellationToken.any(cancel_token, timeout_token)

        tally = {"completed": 0, "success": 0, "failed": 0}
        completed_at_timeout: List[int] = []
        timeout_token.on_cancel(
            lambda: completed_at_timeout.append(tally["completed"])
        )

        def settle(outcome: ExtractionOutcome, started: float) -> ExtractionOutcome:
            finished = time.monotonic()
            tally["completed"] += 1
            succeeded = isinstance(outcome, ExtractionSuccess)
            if succeeded:
                tally["success"] += 1
            else:
                tally["failed"] += 1
            FULLTEXT_FETCHES.labels(status="success" if succeeded else "failed").inc()
            ITEM_DURATION.labels(operation="fetch").observe(finished - started)
            if self.recorder is not None:
                self.recorder.record_operation("fetch", finished - started, succeeded)
            eta_estimator.record_completion(started, finished)

            if on_progress is not None:
                estimate = eta_estimator.get_estimate(tally["completed"], total)
                on_progress(
                    ExtractionProgress(
                        completed=tally["completed"],
                        total=total,
                        success_count=tally["success"],
                        failed_count=tally["failed"],
                        percentage=round(tally["completed"] / total * 100),
                        current_paper_id=outcome.original_id,
                        estimated_time_remaining=estimate.formatted
                        if estimate.is_reliable
                        else None,
                        average_seconds_per_item=estimate.average_task_seconds
                        if estimate.is_reliable
                        else None,
                    )
                )
            return outcome

        async def extract_one(original_id: str, persisted_id: str) -> ExtractionOutcome:
            started = time.monotonic()
            try:
                paper = await self._fetch_with_resilience(persisted_id, combined)
            except Exception as e:
                logger.debug(
                    "fulltext_fetch_failed",
                    paper_id=truncate_id(persisted_id),
                    error_type=type(e).__name__,
                    error=str(e),
                )
                return settle(
                    ExtractionFailure(
                        original_id=original_id,
                        persisted_id=persisted_id,
                        error=str(e),
                    ),
                    started,
                )
            return settle(
                ExtractionSuccess(
                    original_id=original_id,
                    persisted_id=persisted_id,
                    paper=paper,
                ),
                started,
            )

        logger.info(
            "fulltext_batch_started",
            total=total,
            timeout_seconds=timeout_seconds,
            breaker_state=self.circuit_breaker.state.value,
        )

        loop = asyncio.get_running_loop()
        timer = loop.call_later(timeout_seconds, timeout_token.cancel)
        try:
            settled = await asyncio.gather(
                *(extract_one(oid, pid) for oid, pid in id_map.items()),
                return_exceptions=True,
            )
        finally:
            timer.cancel()
            combined.detach()

        outcomes: List[ExtractionOutcome] = []
        for (original_id, persisted_id), item in zip(id_map.items(), settled):
            if isinstance(item, BaseException):
                # only reachable if a progress callback raised
                item = ExtractionFailure(original_id, persisted_id, str(item))
            outcomes.append(item)

        success_count = sum(1 for o in outcomes if isinstance(o, ExtractionSuccess))
        failed_count = len(outcomes) - success_count
        counts = {
            "total_count": total,
            "success_count": success_count,
            "failed_count": failed_count,
        }

        if cancel_token is not None and cancel_token.is_cancelled():
            logger.info("fulltext_batch_cancelled", **counts)
            raise ExtractionCancelledError("Extraction cancelled by user", context=counts)

        if timeout_token.is_cancelled():
            completed_before_timeout = (
                completed_at_timeout[0] if completed_at_timeout else 0
            )
            logger.warning(
                "fulltext_batch_timed_out",
                timeout_seconds=timeout_seconds,
                completed_before_timeout=completed_before_timeout,
                **counts,
            )
            raise ExtractionTimeoutError(
                f"Full-text extraction timed out after {timeout_seconds}s "
                f"({completed_before_timeout}/{total} completed)",
                context={
                    "completed_before_timeout": completed_before_timeout,
                    "timeout_seconds": timeout_seconds,
                    **counts,
                },
            )

        result = ExtractionBatchResult(total_count=total, outcomes=outcomes)
        for outcome in outcomes:
            if isinstance(outcome, ExtractionSuccess):
                result.success_count += 1
                result.updated_papers.append(outcome.paper)
                result.full_text_map[outcome.original_id] = outcome.paper
            else:
                result.failed_count += 1
                result.failed_paper_ids.append(outcome.original_id)

        logger.info(
            "fulltext_batch_completed",
            breaker_state=self.circuit_breaker.state.value,
            **counts,
        )
        return result

    async def _fetch_with_resilience(
        self, persisted_id: str, token: CancellationToken
    ) -> PaperRecord:
        """retry(circuit_breaker(fetch)) with token checks around each call."""

        async def attempt() -> PaperRecord:
            if token.is_cancelled():
                raise ExtractionCancelledError(
                    "Extraction cancelled before fetch",
                    context={"paper_id": persisted_id},
                )
            FULLTEXT_IN_FLIGHT.inc()
            try:
                paper = await self.circuit_breaker.execute(
                    lambda: self._fetch(persisted_id)
                )
            finally:
                FULLTEXT_IN_FLIGHT.dec()
            if token.is_cancelled():
                raise ExtractionCancelledError(
                    "Extraction cancelled after fetch",
                    context={"paper_id": persisted_id},
                )
            return _with_word_count(paper)

        policy = RetryPolicy.from_config(
            self.config.retry,
            should_retry=lambda e: not token.is_cancelled() and is_retryable_error(e),
        )
        return await self.retry_handler.execute_with_retry(attempt, policy)


def _with_word_count(paper: PaperRecord) -> PaperRecord:
    if paper.full_text and paper.full_text_word_count is None:
        return paper.model_copy(
            update={
                "has_full_text": True,
                "full_text_status": FullTextStatus.SUCCESS,
                "full_text_word_count": len(paper.full_text.split()),
            }
        )
    return paper
