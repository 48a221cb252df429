"""Source planning commands: limit checks and ETA formatting."""

from pathlib import Path
from typing import Optional

import typer

from litflow.cli.utils import (
    display_error,
    display_info,
    display_success,
    display_warning,
    handle_errors,
    load_settings,
)
from litflow.orchestration.workflow import check_source_count
from litflow.utils.eta import format_duration


@handle_errors
def check_sources_command(
    count: int = typer.Argument(..., min=0, help="Number of sources to extract from"),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Workflow config file (defaults if omitted)"
    ),
):
    """Check a source count against the configured limits."""
    settings = load_settings(config_path)
    validation = check_source_count(count, settings.source_limits)

    if not validation.valid:
        display_error(validation.error or "Source count validation failed")
        raise typer.Exit(code=1)

    if validation.warning:
        display_warning(validation.warning)
    else:
        display_success(f"{count} sources is within limits.")
    display_info(f"Estimated extraction time: ~{validation.estimated_minutes} min")


@handle_errors
def eta_command(
    completed: int = typer.Argument(..., min=0, help="Items finished so far"),
    total: int = typer.Argument(..., min=0, help="Items in the batch"),
    avg_seconds: float = typer.Argument(..., min=0.0, help="Average seconds per item"),
):
    """Print the remaining time for a batch at a given average pace."""
    if completed >= total:
        typer.echo("Complete")
        return
    typer.echo(format_duration(avg_seconds * (total - completed)))
