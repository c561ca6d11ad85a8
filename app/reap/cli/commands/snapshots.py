"""Snapshot management commands.

Lists, prunes and deletes the snapshots taken before every transaction.
Snapshots bound to pending or committing transactions are never removed;
transactions left in flight by a process that died are closed out first.
"""

from typing import Annotated

import typer

from reap.cli.display import create_snapshots_table
from reap.cli.types import (
    exit_restore_failed,
    get_executor,
    get_snapshot_manager,
    require_config,
)
from reap.core.config import ReapConfig
from reap.core.errors import RestoreFailedError, SnapshotInUseError, SnapshotNotFoundError
from reap.core.state import StateManager
from reap.utils.formatting import console, print_error, print_info, print_success

app = typer.Typer(
    help="List and prune snapshots.",
    no_args_is_help=True,
)


def _in_use(config: ReapConfig) -> set[str]:
    """Snapshot ids bound to live transactions."""
    state = StateManager()
    try:
        get_executor(config, state).recover()
    except RestoreFailedError as e:
        raise exit_restore_failed(e) from e
    return state.in_flight_snapshot_ids()


@app.command("list")
def list_snapshots(
    limit: Annotated[
        int | None,
        typer.Option("--limit", "-n", help="Maximum number of snapshots to show."),
    ] = None,
) -> None:
    """List stored snapshots, newest first."""
    snapshots = get_snapshot_manager().list()
    if not snapshots:
        print_info("No snapshots recorded.")
        return
    in_use = StateManager().in_flight_snapshot_ids()
    console.print(create_snapshots_table(snapshots[:limit] if limit else snapshots, in_use))


@app.command()
def prune(
    keep: Annotated[
        int | None,
        typer.Option("--keep", "-k", help="Snapshots to retain (default from config)."),
    ] = None,
    max_age_days: Annotated[
        int | None,
        typer.Option("--max-age", help="Maximum age in days (default from config)."),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Delete snapshots beyond the retention policy."""
    config = require_config()
    keep = keep if keep is not None else config.snapshots.keep
    max_age_days = max_age_days if max_age_days is not None else config.snapshots.max_age_days

    if not yes:
        confirmed = typer.confirm(
            f"Prune snapshots beyond the newest {keep} older than {max_age_days} day(s)?",
            default=False,
        )
        if not confirmed:
            print_info("Aborted.")
            raise typer.Exit(code=0)

    deleted = get_snapshot_manager().prune(
        keep,
        max_age_days,
        in_use=_in_use(config),
    )
    if deleted:
        print_success(f"Pruned {len(deleted)} snapshot(s).")
    else:
        print_info("Nothing to prune.")


@app.command()
def delete(
    snapshot_id: Annotated[str, typer.Argument(help="Snapshot id or unique prefix.")],
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Delete one snapshot."""
    if not yes and not typer.confirm(f"Delete snapshot {snapshot_id}?", default=False):
        print_info("Aborted.")
        raise typer.Exit(code=0)

    in_use = _in_use(require_config())
    try:
        get_snapshot_manager().delete(snapshot_id, in_use=in_use)
    except (SnapshotNotFoundError, SnapshotInUseError) as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e
    print_success(f"Deleted snapshot {snapshot_id}.")
