"""Trace, diff and logs commands.

These read persisted sandbox runs: network activity, the filesystem
diff against the clean base, and the captured build output.
"""

import json
from pathlib import Path
from typing import Annotated

import typer

from reap.core.state import StateManager
from reap.models.sandbox import SandboxRun
from reap.utils.formatting import console, create_table, print_error, print_info

RunArgument = Annotated[
    str,
    typer.Argument(help="Package name (latest run) or sandbox run id."),
]
JsonOption = Annotated[bool, typer.Option("--json", help="Output as JSON.")]

_CHANGE_STYLES = {"added": "added", "removed": "removed", "modified": "changed"}


def find_run(state: StateManager, ref: str) -> SandboxRun:
    """Look up a run by id, falling back to the latest run of a package.

    Raises:
        typer.Exit: If no run matches.
    """
    run = state.get_run(ref) or state.latest_run(ref)
    if run is None:
        print_error(f"No sandbox run found for {ref!r}")
        raise typer.Exit(code=1)
    return run


def trace(ref: RunArgument, json_output: JsonOption = False) -> None:
    """Show network activity observed during a sandbox run.

    Examples:
        reap trace yay
        reap trace 9c1e0f2b7a44
    """
    run = find_run(StateManager(), ref)

    if json_output:
        console.print_json(json.dumps([event.to_dict() for event in run.network]))
        return

    console.print(
        f"[bold]{run.record.key}[/bold] run {run.id} "
        f"[muted]({run.backend.value}, {run.status.value})[/muted]"
    )
    if not run.network:
        print_info("No network activity observed.")
        return

    table = create_table("Network Activity", "Time", "Direction", "Endpoint")
    for event in run.network:
        table.add_row(event.timestamp, event.direction, event.endpoint)
    console.print(table)


def diff(
    ref: RunArgument,
    json_output: JsonOption = False,
    limit: Annotated[
        int | None,
        typer.Option("--limit", "-l", help="Limit number of paths shown."),
    ] = None,
) -> None:
    """Show files a sandbox run added, removed or modified.

    Examples:
        reap diff yay
        reap diff yay --limit 20
    """
    run = find_run(StateManager(), ref)
    changes = list(run.changes)

    if json_output:
        console.print_json(json.dumps([change.to_dict() for change in changes]))
        return

    if not changes:
        print_info(f"Run {run.id} changed no files.")
        return

    shown = changes[:limit] if limit else changes
    table = create_table(f"Filesystem Diff: {run.record.key}", "Change", "Path", "SHA-256")
    for change in shown:
        style = _CHANGE_STYLES[change.kind]
        table.add_row(
            f"[{style}]{change.kind}[/{style}]",
            change.path,
            f"[muted]{(change.sha256 or '-')[:16]}[/muted]",
        )
    console.print(table)

    counts = {kind: sum(1 for c in changes if c.kind == kind) for kind in _CHANGE_STYLES}
    summary = ", ".join(f"{count} {kind}" for kind, count in counts.items() if count)
    console.print(f"\n[dim]{summary}[/dim]")
    if limit and len(shown) < len(changes):
        console.print(f"[dim](showing {len(shown)} of {len(changes)}, limited to {limit})[/dim]")


def logs(ref: RunArgument) -> None:
    """Print the captured build and install output of a sandbox run.

    Examples:
        reap logs yay
    """
    run = find_run(StateManager(), ref)
    if run.log_path is None:
        print_info(f"Run {run.id} has no captured output.")
        return
    try:
        text = Path(run.log_path).read_text(errors="replace")
    except OSError as e:
        print_error(f"Cannot read log {run.log_path}: {e}")
        raise typer.Exit(code=1) from e
    console.print(text, markup=False, highlight=False, end="")
