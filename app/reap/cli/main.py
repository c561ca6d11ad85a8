"""Main CLI application entry point.

Defines the Typer application, global options and logging setup.
"""

import logging
from typing import Annotated

import typer
from rich.logging import RichHandler

from reap import __version__
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
from reap.utils.formatting import err_console

# Create main Typer app
app = typer.Typer(
    name="reap",
    help="Audited, sandboxed, rollback-safe package installs for Arch Linux.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"reap version {__version__}")
        raise typer.Exit()


def configure_logging(verbose: bool, quiet: bool) -> None:
    """Route library logging through Rich on stderr.

    Args:
        verbose: Log debug messages.
        quiet: Log errors only.
    """
    level = logging.DEBUG if verbose else logging.ERROR if quiet else logging.WARNING
    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)
    handler = RichHandler(
        console=err_console,
        show_time=verbose,
        show_path=verbose,
        rich_tracebacks=verbose,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)
    root.setLevel(level)


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable verbose output.",
        ),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option(
            "--quiet",
            "-q",
            help="Suppress non-essential output.",
        ),
    ] = False,
) -> None:
    """reap - audited, sandboxed package installs for Arch Linux.

    Every package is resolved across pacman, Chaotic-AUR, the AUR,
    Flatpak and Git taps, audited, test-installed in a throwaway sandbox,
    and only then committed to the host inside a snapshot-backed
    transaction.
    """
    configure_logging(verbose, quiet)
    # Store options in context for subcommands
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet


# Register commands
app.command("search")(search.search)
app.command("install")(install.install)
app.command("test")(install.vet)
app.command("upgrade")(upgrade.upgrade)
app.command("rollback")(rollback.rollback)
app.command("trace")(inspect.trace)
app.command("diff")(inspect.diff)
app.command("logs")(inspect.logs)
app.add_typer(doctor.app, name="doctor")
app.add_typer(history.app, name="history")
app.add_typer(snapshots.app, name="snapshots")
app.add_typer(config.app, name="config")


if __name__ == "__main__":
    app()
