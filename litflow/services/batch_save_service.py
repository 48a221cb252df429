"""Batch save service: persist selected papers under a rate limit.

This service handles:
1. Required-field validation (invalid records fail without a network call)
2. Skipping records that already carry a persisted ID
3. Saving the rest in strictly ordered batches of ``max_concurrency``
4. Sleeping between batches to stay under the backend request budget
5. Retrying transient save failures

Cancellation is checked before every batch. A batch that has started
always settles completely; one failed save never aborts its siblings.
"""

import asyncio
import time
from typing import Awaitable, Callable, Dict, List, Optional

import structlog

from litflow.models.config import BatchSaveConfig
from litflow.models.paper import PaperRecord, SaveResult
from litflow.models.workflow import BatchResult, BatchSaveProgress, FailedItem
from litflow.observability.metrics import ITEM_DURATION, PAPER_SAVES
from litflow.observability.performance import PerformanceMetricsRecorder
from litflow.utils.cancellation import CancellationToken
from litflow.utils.error_classifier import is_retryable_error
from litflow.utils.exceptions import OperationCancelledError
from litflow.utils.retry import RetryHandler, RetryPolicy

logger = structlog.get_logger()

SaveCallable = Callable[[PaperRecord], Awaitable[SaveResult]]
SaveProgressCallback = Callable[[BatchSaveProgress], None]


class SaveRejected(Exception):
    """The persistence call answered but did not save the record."""


class BatchSaveService:
    """Saves papers sequentially (or in small concurrent batches)

    With the default settings (one save per batch, 0.7s apart) the service
    issues ~1.43 requests/second, under a 100 requests/minute budget.
    """

    def __init__(
        self,
        save: SaveCallable,
        config: Optional[BatchSaveConfig] = None,
        retry_handler: Optional[RetryHandler] = None,
        recorder: Optional[PerformanceMetricsRecorder] = None,
    ) -> None:
        """Initialize batch save service

        Args:
            save: Persistence collaborator, ``save(record) -> SaveResult``
            config: Batch size, pacing and retry settings
            retry_handler: Retry executor (a default one is created if omitted)
            recorder: Optional per-run performance recorder
        """
        self.config = config or BatchSaveConfig()
        self._save = save
        self.retry_handler = retry_handler or RetryHandler()
        self.retry_policy = RetryPolicy.from_config(
            self.config.retry, should_retry=is_retryable_error
        )
        self.recorder = recorder

    async def batch_save(
        self,
        items: List[PaperRecord],
        *,
        cancel_token: Optional[CancellationToken] = None,
        on_progress: Optional[SaveProgressCallback] = None,
    ) -> BatchResult:
        """Save every record and return the cumulative outcome

        Args:
            items: Records to persist
            cancel_token: Checked before each batch
            on_progress: Called before and after every batch

        Returns:
            BatchResult with counts, failures and original → persisted IDs

        Raises:
            OperationCancelledError: Cancellation observed before a batch;
                ``context`` holds the counts reached so far
        """
        if not items:
            return BatchResult()

        total = len(items)
        saved_count = 0
        skipped_count = 0
        failed_items: List[FailedItem] = []
        id_mapping: Dict[str, str] = {}
        pending: List[PaperRecord] = []

        for item in items:
            missing = item.missing_required_fields()
            if missing:
                failed_items.append(
                    FailedItem(
                        id=item.id,
                        title=item.title,
                        error=f"Missing required fields: {', '.join(missing)}",
                    )
                )
                PAPER_SAVES.labels(status="failed").inc()
                continue
            if item.persisted_id:
                id_mapping[item.id] = item.persisted_id
                skipped_count += 1
                PAPER_SAVES.labels(status="skipped").inc()
                continue
            pending.append(item)

        batch_size = self.config.max_concurrency
        batches = [
            pending[i : i + batch_size] for i in range(0, len(pending), batch_size)
        ]
        total_batches = len(batches)

        logger.info(
            "batch_save_started",
            total=total,
            pending=len(pending),
            skipped=skipped_count,
            invalid=len(failed_items),
            batch_size=batch_size,
            total_batches=total_batches,
        )

        def report(current_batch: int, message: str) -> None:
            if on_progress is None:
                return
            on_progress(
                BatchSaveProgress(
                    current_batch=current_batch,
                    total_batches=total_batches,
                    saved_count=saved_count,
                    failed_count=len(failed_items),
                    skipped_count=skipped_count,
                    total=total,
                    message=message,
                )
            )

        for index, batch in enumerate(batches, start=1):
            if cancel_token is not None and cancel_token.is_cancelled():
                context = {
                    "saved_count": saved_count,
                    "failed_count": len(failed_items),
                    "skipped_count": skipped_count,
                    "processed_count": saved_count + len(failed_items) + skipped_count,
                }
                logger.info("batch_save_cancelled", batch=index, **context)
                raise OperationCancelledError(
                    "Paper save cancelled by user", context=context
                )

            report(index, f"Saving batch {index}/{total_batches}...")

            results = await asyncio.gather(
                *(self._save_one(paper) for paper in batch), return_exceptions=True
            )

            for paper, result in zip(batch, results):
                if isinstance(result, BaseException):
                    failed_items.append(
                        FailedItem(id=paper.id, title=paper.title, error=str(result))
                    )
                    PAPER_SAVES.labels(status="failed").inc()
                    logger.warning(
                        "paper_save_failed",
                        paper_id=paper.id,
                        error_type=type(result).__name__,
                        error=str(result),
                    )
                else:
                    id_mapping[paper.id] = result
                    saved_count += 1
                    PAPER_SAVES.labels(status="saved").inc()

            report(index, f"Saved {saved_count + skipped_count}/{total} papers")

            if index < total_batches and self.config.inter_batch_delay_seconds > 0:
                await asyncio.sleep(self.config.inter_batch_delay_seconds)

        if total_batches == 0:
            report(0, f"Saved {saved_count + skipped_count}/{total} papers")

        result = BatchResult(
            saved_count=saved_count,
            skipped_count=skipped_count,
            failed_count=len(failed_items),
            failed_items=failed_items,
            id_mapping=id_mapping,
        )
        logger.info(
            "batch_save_completed",
            saved=result.saved_count,
            skipped=result.skipped_count,
            failed=result.failed_count,
        )
        return result

    async def _save_one(self, paper: PaperRecord) -> str:
        """Save a single record with retry; returns the persisted ID."""
        started = time.monotonic()
        success = False
        try:
            result = await self.retry_handler.execute_with_retry(
                lambda: self._save(paper), self.retry_policy
            )
            if not result.success or not result.id:
                raise SaveRejected(f"Save was not acknowledged for paper {paper.id}")
            success = True
            return result.id
        finally:
            duration = time.monotonic() - started
            ITEM_DURATION.labels(operation="save").observe(duration)
            if self.recorder is not None:
                self.recorder.record_operation("save", duration, success)
