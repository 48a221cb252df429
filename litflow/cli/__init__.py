"""litflow CLI Package.

Usage:
    python -m litflow.cli validate config/workflow.yaml
    python -m litflow.cli check-sources 350 --config config/workflow.yaml
    python -m litflow.cli eta 3 10 1.5
"""

import typer

from litflow.cli.validate import validate_command
from litflow.cli.sources import check_sources_command, eta_command

app = typer.Typer(help="litflow: resilient literature extraction workflow")

app.command(name="validate")(validate_command)
app.command(name="check-sources")(check_sources_command)
app.command(name="eta")(eta_command)

__all__ = [
    "app",
    "validate_command",
    "check_sources_command",
    "eta_command",
]
