"""Orchestration module for the extraction workflow."""

from litflow.orchestration.workflow import (
    ExtractionWorkflow,
    ProgressReporter,
    check_source_count,
    create_workflow,
    get_stage_name,
    stage_percentage,
)

__all__ = [
    "ExtractionWorkflow",
    "ProgressReporter",
    "check_source_count",
    "create_workflow",
    "get_stage_name",
    "stage_percentage",
]
