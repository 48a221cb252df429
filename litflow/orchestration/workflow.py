"""Four-stage extraction workflow.

Stages and their share of the overall progress bar:

    save     0-15%   persist selected papers (BatchSaveService)
    fetch   15-40%   fetch full text for saved papers (FullTextExtractionService)
    prepare    40%   choose each paper's content, drop papers without enough
    extract 40-100%  one downstream extraction call, opaque to this layer

Business limits on the number of sources are enforced here and nowhere
else; the services below are unaware of them.
"""

import math
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from litflow.models.config import SourceLimits, WorkflowSettings
from litflow.models.paper import PaperRecord
from litflow.models.workflow import (
    BatchSaveProgress,
    ExtractionProgress,
    PreparedSource,
    SourceCountValidation,
    WorkflowProgress,
    WorkflowResult,
    WorkflowStage,
)
from litflow.observability.context import correlation_id_context
from litflow.observability.metrics import STAGE_DURATION, WORKFLOW_RUNS
from litflow.observability.performance import PerformanceMetricsRecorder
from litflow.services.batch_save_service import BatchSaveService, SaveCallable
from litflow.services.content_analysis import prepare_sources
from litflow.services.fulltext_service import FetchCallable, FullTextExtractionService
from litflow.utils.cancellation import CancellationToken
from litflow.utils.exceptions import (
    ExtractionTimeoutError,
    InputValidationError,
    NoUsableSourcesError,
    OperationCancelledError,
    SourceLimitExceededError,
)

logger = structlog.get_logger()

StageProgressCallback = Callable[[int, int, str], None]
ExtractCallable = Callable[[List[PreparedSource], StageProgressCallback], Awaitable[Any]]
WorkflowProgressCallback = Callable[[WorkflowProgress], None]

TOTAL_STAGES = 4

STAGE_RANGES = {
    WorkflowStage.SAVE: (0, 15),
    WorkflowStage.FETCH: (15, 40),
    WorkflowStage.PREPARE: (40, 40),
    WorkflowStage.EXTRACT: (40, 100),
}

STAGE_NUMBERS = {
    WorkflowStage.SAVE: 1,
    WorkflowStage.FETCH: 2,
    WorkflowStage.PREPARE: 3,
    WorkflowStage.EXTRACT: 4,
    WorkflowStage.COMPLETE: 4,
}

STAGE_NAMES = {
    WorkflowStage.SAVE: "Saving Papers",
    WorkflowStage.FETCH: "Fetching Full Text",
    WorkflowStage.PREPARE: "Preparing Sources",
    WorkflowStage.EXTRACT: "Extracting",
    WorkflowStage.COMPLETE: "Complete",
}


def get_stage_name(stage: WorkflowStage) -> str:
    """Display name for a workflow stage."""
    return STAGE_NAMES.get(stage, "Unknown")


def stage_percentage(stage: WorkflowStage, fraction: float) -> int:
    """Map a 0..1 fraction of a stage onto the overall 0-100 scale."""
    if stage == WorkflowStage.COMPLETE:
        return 100
    start, end = STAGE_RANGES[stage]
    fraction = min(max(fraction, 0.0), 1.0)
    return round(start + (end - start) * fraction)


class ProgressReporter:
    """Emits WorkflowProgress snapshots whose percentage never decreases."""

    def __init__(self, callback: Optional[WorkflowProgressCallback]) -> None:
        self._callback = callback
        self.last_percentage = 0

    def emit(
        self,
        stage: WorkflowStage,
        percentage: int,
        message: str,
        current_item: int = 0,
        total_items: int = 0,
    ) -> None:
        self.last_percentage = max(self.last_percentage, min(100, percentage))
        if self._callback is None:
            return
        self._callback(
            WorkflowProgress(
                stage=stage,
                stage_number=STAGE_NUMBERS[stage],
                total_stages=TOTAL_STAGES,
                current_item=max(0, current_item),
                total_items=max(0, total_items),
                percentage=self.last_percentage,
                message=message,
            )
        )


def check_source_count(count: int, limits: SourceLimits) -> SourceCountValidation:
    """Check a source count against business limits.

    Above the hard limit the run is rejected; above the soft limit it is
    allowed with a warning that includes a rough duration estimate.
    """
    if count < 0:
        raise InputValidationError(
            "Source count cannot be negative", context={"count": count}
        )

    batches = math.ceil(count / limits.sources_per_batch)
    estimated_minutes = math.ceil(batches * limits.seconds_per_batch / 60)

    if count > limits.hard_limit:
        return SourceCountValidation(
            valid=False,
            error=(
                f"Too many sources ({count}). "
                f"Maximum allowed is {limits.hard_limit} papers."
            ),
            estimated_minutes=estimated_minutes,
        )

    if count > limits.soft_limit:
        return SourceCountValidation(
            valid=True,
            warning=(
                f"Processing {count} sources will take approximately "
                f"{estimated_minutes}-{estimated_minutes + 2} minutes. "
                f"For faster results, consider selecting "
                f"{limits.soft_limit} or fewer papers."
            ),
            estimated_minutes=estimated_minutes,
        )

    return SourceCountValidation(valid=True, estimated_minutes=estimated_minutes)


class ExtractionWorkflow:
    """Sequences save → fetch → prepare → extract for one selection of papers.

    Holds no per-run state. Concurrent runs on one instance share the
    full-text circuit breaker and, when one is supplied, the performance
    recorder; pass a separate recorder per run to keep reports apart.
    """

    def __init__(
        self,
        batch_save_service: BatchSaveService,
        fulltext_service: FullTextExtractionService,
        extract: ExtractCallable,
        settings: Optional[WorkflowSettings] = None,
        recorder: Optional[PerformanceMetricsRecorder] = None,
    ) -> None:
        """Initialize the workflow.

        Args:
            batch_save_service: Save stage
            fulltext_service: Fetch stage
            extract: Downstream extraction,
                ``extract(sources, on_stage_progress) -> payload``
            settings: Limits and content thresholds
            recorder: Optional performance recorder; each stage is recorded
        """
        self.settings = settings or WorkflowSettings()
        self.batch_save_service = batch_save_service
        self.fulltext_service = fulltext_service
        self._extract = extract
        self.recorder = recorder

    def validate_source_count(self, count: int) -> SourceCountValidation:
        """Check a source count against the configured limits."""
        return check_source_count(count, self.settings.source_limits)

    async def run_workflow(
        self,
        papers: List[PaperRecord],
        *,
        cancel_token: Optional[CancellationToken] = None,
        on_progress: Optional[WorkflowProgressCallback] = None,
        run_id: Optional[str] = None,
    ) -> WorkflowResult:
        """Run all four stages for the selected papers.

        Args:
            papers: Papers selected for extraction
            cancel_token: Caller cancellation, honoured between and within stages
            on_progress: Receives monotonically non-decreasing progress
            run_id: Correlation ID for this run's logs (generated if omitted)

        Returns:
            WorkflowResult with each stage's output and the extraction payload

        Raises:
            OperationCancelledError: Caller cancelled
            ExtractionTimeoutError: Full-text fetch missed its deadline
            SourceLimitExceededError: Too many usable sources
            NoUsableSourcesError: No paper had enough content
        """
        run_id = run_id or f"run-{uuid.uuid4().hex[:12]}"
        with correlation_id_context(run_id):
            try:
                result = await self._run(run_id, papers, cancel_token, on_progress)
            except OperationCancelledError as e:
                WORKFLOW_RUNS.labels(status="cancelled").inc()
                logger.info("workflow_cancelled", error=str(e), **e.context)
                raise
            except ExtractionTimeoutError as e:
                WORKFLOW_RUNS.labels(status="timeout").inc()
                logger.error("workflow_timed_out", error=str(e), **e.context)
                raise
            except (SourceLimitExceededError, NoUsableSourcesError) as e:
                WORKFLOW_RUNS.labels(status="rejected").inc()
                logger.warning("workflow_rejected", error=str(e), **e.context)
                raise
            except Exception as e:
                WORKFLOW_RUNS.labels(status="failed").inc()
                logger.error(
                    "workflow_failed",
                    error_type=type(e).__name__,
                    error=str(e),
                    exc_info=True,
                )
                raise

            WORKFLOW_RUNS.labels(status="success").inc()
            logger.info("workflow_completed", **result.to_dict())
            return result

    async def _run(
        self,
        run_id: str,
        papers: List[PaperRecord],
        cancel_token: Optional[CancellationToken],
        on_progress: Optional[WorkflowProgressCallback],
    ) -> WorkflowResult:
        reporter = ProgressReporter(on_progress)
        stage_durations: Dict[str, float] = {}
        warnings: List[str] = []
        total = len(papers)

        logger.info("workflow_started", run_id=run_id, total_papers=total)

        # Stage 1: save
        self._check_cancelled(cancel_token, WorkflowStage.SAVE)
        self._stage_started(WorkflowStage.SAVE, total)
        reporter.emit(WorkflowStage.SAVE, 0, "Saving papers to database...", 0, total)

        def on_save_progress(progress: BatchSaveProgress) -> None:
            processed = (
                progress.saved_count + progress.failed_count + progress.skipped_count
            )
            reporter.emit(
                WorkflowStage.SAVE,
                stage_percentage(
                    WorkflowStage.SAVE, processed / progress.total if progress.total else 1.0
                ),
                progress.message,
                processed,
                progress.total,
            )

        started = time.monotonic()
        save_result = await self.batch_save_service.batch_save(
            papers, cancel_token=cancel_token, on_progress=on_save_progress
        )
        self._stage_finished(
            WorkflowStage.SAVE,
            started,
            len(save_result.id_mapping),
            stage_durations,
        )

        # Stage 2: fetch full text
        self._check_cancelled(cancel_token, WorkflowStage.FETCH)
        id_map = dict(save_result.id_mapping)
        self._stage_started(WorkflowStage.FETCH, len(id_map))
        reporter.emit(
            WorkflowStage.FETCH,
            stage_percentage(WorkflowStage.FETCH, 0.0),
            "Fetching full-text content...",
            0,
            len(id_map),
        )

        def on_fetch_progress(progress: ExtractionProgress) -> None:
            message = f"Fetching full text {progress.completed}/{progress.total}"
            if progress.estimated_time_remaining:
                message += f" (~{progress.estimated_time_remaining} remaining)"
            reporter.emit(
                WorkflowStage.FETCH,
                stage_percentage(WorkflowStage.FETCH, progress.completed / progress.total),
                message,
                progress.completed,
                progress.total,
            )

        started = time.monotonic()
        extraction_result = await self.fulltext_service.extract_batch(
            id_map, cancel_token=cancel_token, on_progress=on_fetch_progress
        )
        self._stage_finished(
            WorkflowStage.FETCH,
            started,
            extraction_result.success_count,
            stage_durations,
        )

        # Stage 3: prepare
        self._check_cancelled(cancel_token, WorkflowStage.PREPARE)
        self._stage_started(WorkflowStage.PREPARE, total)
        started = time.monotonic()
        preparation = prepare_sources(
            papers,
            extraction_result.full_text_map,
            save_result.id_mapping,
            self.settings.content,
        )
        sources = preparation.sources
        self._stage_finished(
            WorkflowStage.PREPARE, started, len(sources), stage_durations
        )

        validation = self.validate_source_count(len(sources))
        if not validation.valid:
            raise SourceLimitExceededError(
                validation.error or "Source count validation failed",
                context={
                    "source_count": len(sources),
                    "hard_limit": self.settings.source_limits.hard_limit,
                },
            )
        if validation.warning:
            warnings.append(validation.warning)
            logger.warning(
                "source_count_warning",
                source_count=len(sources),
                soft_limit=self.settings.source_limits.soft_limit,
                estimated_minutes=validation.estimated_minutes,
            )
        if not sources:
            raise NoUsableSourcesError(
                "No papers with content available for extraction",
                context={
                    "total_selected": preparation.total_selected,
                    "total_skipped": preparation.total_skipped,
                },
            )

        reporter.emit(
            WorkflowStage.PREPARE,
            stage_percentage(WorkflowStage.PREPARE, 1.0),
            f"Prepared {len(sources)} sources ({preparation.total_skipped} skipped)",
            len(sources),
            total,
        )
        logger.info(
            "stage_transition",
            completed=get_stage_name(WorkflowStage.PREPARE),
            next=get_stage_name(WorkflowStage.EXTRACT),
        )

        # Stage 4: extract
        self._check_cancelled(cancel_token, WorkflowStage.EXTRACT)
        self._stage_started(WorkflowStage.EXTRACT, len(sources))
        reporter.emit(
            WorkflowStage.EXTRACT,
            stage_percentage(WorkflowStage.EXTRACT, 0.0),
            "Extracting from content...",
            0,
            len(sources),
        )

        last_downstream_stage = [0]

        def on_stage_progress(stage_number: int, total_stages: int, message: str) -> None:
            if stage_number > last_downstream_stage[0]:
                logger.info(
                    "extraction_stage_changed",
                    stage_number=stage_number,
                    total_stages=total_stages,
                )
                last_downstream_stage[0] = stage_number
            fraction = stage_number / total_stages if total_stages > 0 else 0.0
            reporter.emit(
                WorkflowStage.EXTRACT,
                stage_percentage(WorkflowStage.EXTRACT, fraction),
                f"Stage {stage_number}/{total_stages}: "
                f"{message or 'Analyzing content...'}",
                stage_number,
                len(sources),
            )

        started = time.monotonic()
        payload = await self._extract(sources, on_stage_progress)
        self._stage_finished(
            WorkflowStage.EXTRACT, started, len(sources), stage_durations
        )

        reporter.emit(
            WorkflowStage.COMPLETE,
            100,
            f"Extraction complete for {len(sources)} sources",
            len(sources),
            len(sources),
        )

        return WorkflowResult(
            run_id=run_id,
            save_result=save_result,
            extraction_result=extraction_result,
            preparation=preparation,
            payload=payload,
            warnings=warnings,
            stage_durations=stage_durations,
        )

    @staticmethod
    def _check_cancelled(
        cancel_token: Optional[CancellationToken], stage: WorkflowStage
    ) -> None:
        if cancel_token is not None and cancel_token.is_cancelled():
            raise OperationCancelledError(
                "Workflow cancelled by user", context={"stage": stage.value}
            )

    def _stage_started(self, stage: WorkflowStage, input_count: int) -> None:
        logger.info(
            "stage_started",
            stage=stage.value,
            stage_name=get_stage_name(stage),
            input_count=input_count,
        )
        if self.recorder is not None:
            self.recorder.start_stage(stage.value, input_count)

    def _stage_finished(
        self,
        stage: WorkflowStage,
        started: float,
        output_count: int,
        stage_durations: Dict[str, float],
    ) -> None:
        duration = time.monotonic() - started
        stage_durations[stage.value] = duration
        STAGE_DURATION.labels(stage=stage.value).observe(duration)
        if self.recorder is not None:
            self.recorder.end_stage(stage.value, output_count)
        logger.info(
            "stage_completed",
            stage=stage.value,
            duration_seconds=round(duration, 3),
            output_count=output_count,
        )


def create_workflow(
    save: SaveCallable,
    fetch: FetchCallable,
    extract: ExtractCallable,
    settings: Optional[WorkflowSettings] = None,
    recorder: Optional[PerformanceMetricsRecorder] = None,
) -> ExtractionWorkflow:
    """Build a workflow with its own services, breaker and ETA estimator.

    Args:
        save: ``save(record) -> SaveResult``
        fetch: ``fetch(persisted_id) -> PaperRecord``
        extract: ``extract(sources, on_stage_progress) -> payload``
        settings: Workflow settings (defaults when omitted)
        recorder: Optional performance recorder shared by all stages
    """
    settings = settings or WorkflowSettings()
    batch_save_service = BatchSaveService(
        save, config=settings.batch_save, recorder=recorder
    )
    fulltext_service = FullTextExtractionService(
        fetch, config=settings.fulltext, recorder=recorder
    )
    return ExtractionWorkflow(
        batch_save_service,
        fulltext_service,
        extract,
        settings=settings,
        recorder=recorder,
    )
