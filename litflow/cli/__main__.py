"""CLI entry point.

Allows running the CLI as a module: python -m litflow.cli
"""

from litflow.cli import app

if __name__ == "__main__":
    app()
