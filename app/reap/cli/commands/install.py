"""Install and test command implementations.

Both commands drive requests through the full pipeline: resolve, plan,
audit and sandbox. ``install`` then commits the vetted plan to the host
inside a snapshot-backed transaction; ``test`` stops after the sandbox.
"""

from typing import Annotated

import typer

from reap.cli.display import create_plan_table, print_report
from reap.cli.types import (
    build_pipeline,
    exit_restore_failed,
    interruptible,
    parse_pins,
    require_config,
)
from reap.core.errors import ReapError, RestoreFailedError
from reap.utils.formatting import console, print_error, print_info

PinOption = Annotated[
    list[str] | None,
    typer.Option(
        "--pin",
        "-p",
        help="Force a backend for a package (ORIGIN:NAME). Repeatable.",
    ),
]
AcceptOption = Annotated[
    bool,
    typer.Option(
        "--accept-changes",
        help="Accept new or changed recipes as the new known-good baseline.",
    ),
]


def install(
    packages: Annotated[list[str], typer.Argument(help="Packages to install ([ORIGIN:]NAME).")],
    override: Annotated[
        bool,
        typer.Option(
            "--override",
            help="Install despite blocked audit verdicts (recorded in the journal).",
        ),
    ] = False,
    accept_changes: AcceptOption = False,
    pin: PinOption = None,
    dry_run: Annotated[
        bool,
        typer.Option(
            "--dry-run",
            "-n",
            help="Show the install plan without installing.",
        ),
    ] = False,
) -> None:
    """Install packages after auditing and sandboxing them.

    Examples:
        reap install ripgrep
        reap install aur:yay --pin aur:go
        reap install foo --override        # install despite blocked audit
        reap install foo --dry-run         # plan only
    """
    config = require_config()
    pipeline = build_pipeline(config)
    pins = parse_pins(pin)

    if dry_run:
        try:
            plan = pipeline.plan(packages, pins)
        except ReapError as e:
            print_error(str(e))
            raise typer.Exit(code=1) from e
        console.print(create_plan_table(plan, dry_run=True))
        print_info("[dry-run] No changes made.")
        return

    with interruptible() as cancel:
        try:
            report = pipeline.run(
                packages,
                override=override,
                accept_changes=accept_changes,
                pins=pins,
                cancel=cancel,
            )
        except RestoreFailedError as e:
            raise exit_restore_failed(e) from e

    print_report(report)
    if not report.ok:
        raise typer.Exit(code=1)


def vet(
    packages: Annotated[list[str], typer.Argument(help="Packages to test ([ORIGIN:]NAME).")],
    accept_changes: AcceptOption = False,
    pin: PinOption = None,
) -> None:
    """Build and test-install packages in a sandbox without touching the host.

    Examples:
        reap test ripgrep
        reap test tap:mytool
    """
    config = require_config()
    pipeline = build_pipeline(config)

    with interruptible() as cancel:
        report = pipeline.test(
            packages,
            accept_changes=accept_changes,
            pins=parse_pins(pin),
            cancel=cancel,
        )

    print_report(report, dry_run=True)
    if not report.ok:
        raise typer.Exit(code=1)
