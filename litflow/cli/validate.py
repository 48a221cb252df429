"""Validate command for configuration files."""

from pathlib import Path

import typer

from litflow.services.config_manager import ConfigManager, ConfigValidationError
from litflow.cli.utils import handle_errors, display_success, display_error, display_info


@handle_errors
def validate_command(
    config_path: Path = typer.Argument(..., help="Config file to validate"),
):
    """Validate configuration file syntax and semantics."""
    try:
        manager = ConfigManager(config_path=str(config_path))
        settings = manager.load_config()
    except (FileNotFoundError, ConfigValidationError) as e:
        display_error(f"Validation failed: {e}")
        raise typer.Exit(code=1)

    display_success("Configuration is valid!")
    display_info(
        f"Source limits: soft={settings.source_limits.soft_limit}, "
        f"hard={settings.source_limits.hard_limit}; "
        f"full-text timeout {settings.fulltext.timeout_seconds:g}s"
    )
