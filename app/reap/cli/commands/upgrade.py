"""Upgrade command implementation.

Finds installed foreign packages with newer versions available and
upgrades each one in its own transaction.
"""

from typing import Annotated

import typer

from reap.cli.display import print_report
from reap.cli.types import build_pipeline, exit_restore_failed, interruptible, require_config
from reap.core.errors import RestoreFailedError
from reap.utils.formatting import console, create_table, print_error, print_info, print_success


def upgrade(
    packages: Annotated[
        list[str] | None,
        typer.Argument(help="Limit the upgrade to these packages."),
    ] = None,
    check: Annotated[
        bool,
        typer.Option(
            "--check",
            help="Only list available upgrades.",
        ),
    ] = False,
) -> None:
    """Upgrade foreign packages (AUR, taps, ...) to their newest versions.

    Upgrades run concurrently as independent transactions; commits are
    serialized by the global writer lock.

    Examples:
        reap upgrade              # upgrade everything outdated
        reap upgrade yay paru
        reap upgrade --check      # list only
    """
    config = require_config()
    pipeline = build_pipeline(config)

    try:
        outdated = pipeline.outdated(packages)
    except RuntimeError as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e

    if not outdated:
        print_success("Everything is up to date.")
        return

    table = create_table("Available Upgrades", "Package", "Installed", "Available", "Origin")
    for name, local, update in outdated:
        table.add_row(name, local, f"[added]{update.version}[/added]", update.origin.label)
    console.print(table)

    if check:
        return

    with interruptible() as cancel:
        try:
            reports = pipeline.upgrade(cancel=cancel, updates=outdated)
        except RestoreFailedError as e:
            raise exit_restore_failed(e) from e

    for report in reports:
        print_report(report)

    failed = [report for report in reports if not report.ok]
    if failed:
        print_error(f"{len(failed)} of {len(reports)} upgrade(s) failed.")
        raise typer.Exit(code=1)
    print_info(f"{len(reports)} package(s) upgraded.")
