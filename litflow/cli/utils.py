"""Shared CLI utilities.

Provides common functionality for all CLI commands.
"""

import functools
from pathlib import Path
from typing import Callable, Optional, TypeVar

import structlog
import typer

from litflow.models.config import WorkflowSettings
from litflow.observability.logging import configure_logging
from litflow.services.config_manager import ConfigManager, ConfigValidationError

configure_logging(level="WARNING", json_output=False)
logger = structlog.get_logger()

F = TypeVar("F", bound=Callable)


def load_settings(config_path: Optional[Path]) -> WorkflowSettings:
    """Load settings from a file, or return defaults when no path is given.

    A loaded file also applies its log_level and json_logs to logging.

    Raises:
        typer.Exit: If configuration is invalid.
    """
    if config_path is None:
        return WorkflowSettings()
    config_manager = ConfigManager(config_path=str(config_path))
    try:
        settings = config_manager.load_config()
    except (FileNotFoundError, ConfigValidationError) as e:
        typer.secho(f"Configuration Error: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    configure_logging(level=settings.log_level, json_output=settings.json_logs)
    return settings


def handle_errors(func: F) -> F:
    """Decorator for consistent error handling.

    Catches exceptions and displays user-friendly error messages.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except typer.Exit:
            raise
        except Exception as e:
            logger.exception("command_failed")
            typer.secho(f"Error: {e}", fg=typer.colors.RED)
            raise typer.Exit(code=1)

    return wrapper  # type: ignore[return-value]


def display_success(message: str) -> None:
    typer.secho(message, fg=typer.colors.GREEN)


def display_warning(message: str) -> None:
    typer.secho(message, fg=typer.colors.YELLOW)


def display_error(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED)


def display_info(message: str) -> None:
    typer.secho(message, fg=typer.colors.CYAN)
