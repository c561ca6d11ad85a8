"""CLI commands for reap.

This package contains all subcommand implementations.
"""

from reap.cli.commands import (
    config,
    doctor,
    history,
    inspect,
    install,
    rollback,
    search,
    snapshots,
    upgrade,
)

__all__ = [
    "config",
    "doctor",
    "history",
    "inspect",
    "install",
    "rollback",
    "search",
    "snapshots",
    "upgrade",
]
