"""Workflow result and progress models.

Defines the values returned by the save, fetch and prepare stages, the
progress snapshots handed to ``on_progress`` callbacks, and the final
workflow result.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from litflow.models.paper import ContentType, PaperRecord


class WorkflowStage(str, Enum):
    SAVE = "save"
    FETCH = "fetch"
    PREPARE = "prepare"
    EXTRACT = "extract"
    COMPLETE = "complete"


class FailedItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""
    error: str


class BatchResult(BaseModel):
    """Cumulative outcome of a batch save"""

    model_config = ConfigDict(frozen=True)

    saved_count: int = Field(0, ge=0)
    skipped_count: int = Field(0, ge=0)
    failed_count: int = Field(0, ge=0)
    failed_items: List[FailedItem] = Field(default_factory=list)
    id_mapping: Dict[str, str] = Field(default_factory=dict)

    @property
    def processed_count(self) -> int:
        return self.saved_count + self.skipped_count + self.failed_count


class BatchSaveProgress(BaseModel):
    """Snapshot passed to batch save progress callbacks"""

    current_batch: int
    total_batches: int
    saved_count: int
    failed_count: int
    skipped_count: int
    total: int
    message: str


@dataclass(frozen=True)
class ExtractionSuccess:
    original_id: str
    persisted_id: str
    paper: PaperRecord


@dataclass(frozen=True)
class ExtractionFailure:
    original_id: str
    persisted_id: str
    error: str


ExtractionOutcome = Union[ExtractionSuccess, ExtractionFailure]


@dataclass
class ExtractionBatchResult:
    """Tally of a full-text batch; one outcome per submitted item."""

    total_count: int = 0
    success_count: int = 0
    failed_count: int = 0
    updated_papers: List[PaperRecord] = field(default_factory=list)
    failed_paper_ids: List[str] = field(default_factory=list)
    outcomes: List[ExtractionOutcome] = field(default_factory=list)
    full_text_map: Dict[str, PaperRecord] = field(default_factory=dict)


class ExtractionProgress(BaseModel):
    """Snapshot passed to full-text progress callbacks

    ETA fields are only populated once the estimate is reliable.
    """

    completed: int
    total: int
    success_count: int
    failed_count: int
    percentage: int = Field(ge=0, le=100)
    current_paper_id: Optional[str] = None
    estimated_time_remaining: Optional[str] = None
    average_seconds_per_item: Optional[float] = None


class WorkflowProgress(BaseModel):
    """Snapshot passed to workflow progress callbacks"""

    stage: WorkflowStage
    stage_number: int = Field(ge=1)
    total_stages: int = Field(ge=1)
    current_item: int = Field(0, ge=0)
    total_items: int = Field(0, ge=0)
    percentage: int = Field(ge=0, le=100)
    message: str = ""


class PreparedSource(BaseModel):
    """One paper's text as handed to the downstream extractor"""

    id: str
    title: str
    content: str
    content_type: ContentType
    word_count: int = 0
    authors: List[str] = Field(default_factory=list)
    year: Optional[int] = None
    doi: Optional[str] = None
    url: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)


class SkippedSource(BaseModel):
    id: str
    title: str
    reason: str


class ContentBreakdown(BaseModel):
    full_text: int = 0
    abstract_overflow: int = 0
    abstract: int = 0
    none: int = 0


class PreparationResult(BaseModel):
    sources: List[PreparedSource] = Field(default_factory=list)
    skipped: List[SkippedSource] = Field(default_factory=list)
    breakdown: ContentBreakdown = Field(default_factory=ContentBreakdown)
    average_content_length: int = 0
    total_selected: int = 0

    @property
    def total_with_content(self) -> int:
        return len(self.sources)

    @property
    def total_skipped(self) -> int:
        return len(self.skipped)


class SourceCountValidation(BaseModel):
    valid: bool
    warning: Optional[str] = None
    error: Optional[str] = None
    estimated_minutes: Optional[int] = None


@dataclass
class WorkflowResult:
    """Result of a workflow run.

    Aggregates the output of all four stages.
    """

    run_id: str
    save_result: BatchResult
    extraction_result: ExtractionBatchResult
    preparation: PreparationResult
    payload: Any = None
    warnings: List[str] = field(default_factory=list)
    stage_durations: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "run_id": self.run_id,
            "saved_count": self.save_result.saved_count,
            "skipped_count": self.save_result.skipped_count,
            "save_failed_count": self.save_result.failed_count,
            "fulltext_success_count": self.extraction_result.success_count,
            "fulltext_failed_count": self.extraction_result.failed_count,
            "sources_prepared": self.preparation.total_with_content,
            "sources_skipped": self.preparation.total_skipped,
            "warnings": self.warnings,
            "stage_durations": self.stage_durations,
        }
