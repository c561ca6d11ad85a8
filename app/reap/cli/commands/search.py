"""Search command implementation.

Queries every configured backend concurrently and lists matching
packages.
"""

import json
from typing import Annotated

import typer

from reap.cli.display import create_records_table
from reap.cli.types import get_backends, interruptible, require_config
from reap.core.errors import CancelledError
from reap.core.resolver import SourceResolver
from reap.models.record import BackendOrigin
from reap.utils.formatting import console, print_error, print_info, print_warning


def search(
    terms: Annotated[list[str], typer.Argument(help="Search terms.")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON."),
    ] = False,
) -> None:
    """Search all backends for packages.

    Examples:
        reap search ripgrep
        reap search --json neovim
    """
    config = require_config()
    resolver = SourceResolver(
        get_backends(config),
        order=[BackendOrigin(name) for name in config.backends.order],
        ignored=config.ignored,
        timeout=config.backends.query_timeout,
        max_workers=config.parallel,
    )

    found = False
    with interruptible() as cancel:
        for term in terms:
            try:
                resolution = resolver.search(term, cancel)
            except CancelledError as e:
                print_error(str(e))
                raise typer.Exit(code=1) from e

            degraded = {
                name: status
                for name, status in resolution.status_labels().items()
                if status in ("unavailable", "timeout")
            }
            for name, status in sorted(degraded.items()):
                print_warning(f"Backend {name} {status}; results may be incomplete")

            if json_output:
                data = {
                    "term": term,
                    "records": [record.to_dict() for record in resolution.records],
                    "statuses": resolution.status_labels(),
                }
                console.print_json(json.dumps(data))
            elif resolution.records:
                console.print(create_records_table(resolution.records, title=f"Results: {term}"))
            else:
                print_info(f"No packages match {term!r}.")
            found = found or bool(resolution.records)

    if not found:
        raise typer.Exit(code=1)
