"""Doctor command for checking host capabilities.

Probes backends, sandbox drivers and local prerequisites without
changing anything.
"""

import typer

from reap.cli.display import create_doctor_table
from reap.cli.types import get_backends, get_drivers
from reap.core.config import ReapConfig, load_config
from reap.core.doctor import run_checks
from reap.core.errors import ConfigError
from reap.utils.formatting import console, print_error, print_success

app = typer.Typer(
    name="doctor",
    help="Check which backends and sandboxes are usable.",
    invoke_without_command=True,
)


@app.callback(invoke_without_command=True)
def doctor(ctx: typer.Context) -> None:
    """Check host capabilities.

    Exits with status 1 when a required check fails.

    Examples:
        reap doctor
    """
    if ctx.invoked_subcommand is not None:
        return

    # Probe with defaults when the config is broken; the config check reports it
    try:
        config = load_config()
    except ConfigError:
        config = ReapConfig()

    checks = run_checks(get_backends(config), get_drivers(config))
    console.print(create_doctor_table(checks))

    failed = [check.name for check in checks if check.required and not check.passed]
    if failed:
        print_error(f"Required checks failed: {', '.join(failed)}")
        raise typer.Exit(code=1)
    print_success("reap is ready.")
