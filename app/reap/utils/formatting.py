"""Rich console formatting utilities.

Provides consistent formatting for CLI output using Rich.
"""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING

from rich.console import Console
from rich.table import Table

from reap.core.theme import get_theme

if TYPE_CHECKING:
    from reap.models.audit import Verdict
    from reap.models.record import PackageRecord


def _detect_color_system() -> str | None:
    """Return "truecolor" for interactive terminals, None to let Rich decide."""
    if sys.stdout.isatty():
        return "truecolor"
    return None


# Shared console instances (theme loaded once at import)
console = Console(theme=get_theme(), color_system=_detect_color_system())
err_console = Console(theme=get_theme(), stderr=True, color_system=_detect_color_system())


def create_table(title: str, *columns: str) -> Table:
    """Create a pre-configured table with zebra striping.

    Args:
        title: Table title.
        columns: Column headers.

    Returns:
        Rich Table with the given columns.
    """
    table = Table(
        title=title,
        show_header=True,
        header_style="bold_header",
        border_style="border",
        row_styles=["", "on grey7"],
    )
    for column in columns:
        table.add_column(column)
    return table


def format_record(record: PackageRecord) -> str:
    """Format a record as ``name version [ORIGIN]`` with markup."""
    return (
        f"[package.name]{record.name}[/] [package.version]{record.version}[/] "
        f"[origin]{record.origin.label}[/]"
    )


def format_verdict(verdict: Verdict) -> str:
    """Format an audit verdict with its color."""
    return f"[verdict.{verdict.value}]{verdict.value}[/]"


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[info]{message}[/]")


def print_warning(message: str) -> None:
    """Print a warning message."""
    err_console.print(f"[warning]Warning:[/] {message}")


def print_error(message: str) -> None:
    """Print an error message."""
    err_console.print(f"[error]Error:[/] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[success]{message}[/]")
