"""Configuration commands.

Show, read and change values in ~/.config/reap/config.toml.
"""

import json
from typing import Annotated

import tomli_w
import typer

from reap.cli.types import require_config
from reap.core.config import (
    ReapConfig,
    get_config_value,
    save_config,
    set_config_value,
)
from reap.core.errors import ConfigError
from reap.core.paths import get_config_path
from reap.utils.formatting import console, print_error, print_info, print_success

app = typer.Typer(
    help="Show and edit configuration.",
    no_args_is_help=True,
)

KeyArgument = Annotated[str, typer.Argument(help="Dotted key, e.g. sandbox.timeout.")]


@app.command()
def show(
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
) -> None:
    """Show the effective configuration."""
    config = require_config()
    data = config.model_dump(mode="json", exclude_none=True)
    if json_output:
        console.print_json(json.dumps(data))
        return
    console.print(f"[dim]# {get_config_path()}[/dim]")
    console.print(tomli_w.dumps(data), markup=False, highlight=False)


@app.command()
def get(key: KeyArgument) -> None:
    """Print one configuration value."""
    config = require_config()
    try:
        value = get_config_value(config, key)
    except ConfigError as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e
    if isinstance(value, dict | list):
        console.print_json(json.dumps(value))
    else:
        console.print(str(value), markup=False, highlight=False)


@app.command("set")
def set_value(
    key: KeyArgument,
    value: Annotated[str, typer.Argument(help="New value as a TOML literal or plain string.")],
) -> None:
    """Set one configuration value."""
    config = require_config()
    try:
        updated = set_config_value(config, key, value)
        path = save_config(updated)
    except ConfigError as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e
    print_success(f"Set {key} in {path}")


@app.command()
def reset(
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Reset the configuration file to defaults."""
    if not yes and not typer.confirm("Reset configuration to defaults?", default=False):
        print_info("Aborted.")
        raise typer.Exit(code=0)
    try:
        path = save_config(ReapConfig())
    except ConfigError as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e
    print_success(f"Configuration reset: {path}")
