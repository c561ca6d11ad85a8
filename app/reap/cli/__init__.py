"""CLI package for reap.

This package contains the Typer application and all subcommands.
"""

from reap.cli.main import app

__all__ = ["app"]
