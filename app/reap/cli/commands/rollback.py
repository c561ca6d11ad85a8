"""Rollback command for restoring a snapshot.

This module provides the `reap rollback` command, which restores the
package database and files captured by a snapshot.
"""

from typing import Annotated

import typer

from reap.cli.display import format_timestamp
from reap.cli.types import (
    exit_restore_failed,
    get_executor,
    get_snapshot_manager,
    interruptible,
    require_config,
)
from reap.core.errors import CancelledError, RestoreFailedError, SnapshotNotFoundError
from reap.models.snapshot import Snapshot
from reap.utils.formatting import console, print_error, print_info, print_success


def rollback(
    target: Annotated[
        str,
        typer.Argument(help="Snapshot id (or unique prefix), or 'latest'."),
    ] = "latest",
    yes: Annotated[
        bool,
        typer.Option(
            "--yes",
            "-y",
            help="Skip confirmation prompt.",
        ),
    ] = False,
) -> None:
    """Restore the host to a snapshot.

    Examples:
        reap rollback              # restore the most recent snapshot
        reap rollback 3f2a9c       # restore by id prefix
        reap rollback latest -y    # skip confirmation
    """
    config = require_config()
    snapshots = get_snapshot_manager()

    if target == "latest":
        snapshot = snapshots.latest()
        if snapshot is None:
            print_info("No snapshots recorded.")
            return
    else:
        try:
            snapshot = snapshots.get(target)
        except SnapshotNotFoundError as e:
            print_error(str(e))
            raise typer.Exit(code=1) from e

    _show_preview(snapshot)

    if not yes:
        confirm = typer.confirm("Restore this snapshot?")
        if not confirm:
            print_info("Cancelled.")
            return

    executor = get_executor(config)
    with interruptible() as cancel:
        try:
            executor.rollback(snapshot.id, cancel)
        except RestoreFailedError as e:
            raise exit_restore_failed(e) from e
        except CancelledError as e:
            print_error(str(e))
            raise typer.Exit(code=1) from e

    print_success(f"Restored snapshot {snapshot.id}.")


def _show_preview(snapshot: Snapshot) -> None:
    """Display what a snapshot restore will touch."""
    console.print(f"\n[bold]Snapshot {snapshot.id}[/bold]")
    console.print(f"  Date: {format_timestamp(snapshot.timestamp)}")
    if snapshot.label:
        console.print(f"  Label: {snapshot.label}")
    console.print(f"  Packages ({len(snapshot.packages)}):")
    for package in snapshot.packages[:10]:
        state = ", ".join(package.entries) if package.entries else "not installed"
        console.print(f"    - {package.name} [muted]({state})[/muted]")
    if len(snapshot.packages) > 10:
        console.print(f"    ... and {len(snapshot.packages) - 10} more")
    console.print(f"  Files: {len(snapshot.files)}")
    console.print()
