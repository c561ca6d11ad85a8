"""History command for viewing past transactions.

This module provides the `reap history` command for viewing the
transaction journal.
"""

import json
from typing import Annotated

import typer

from reap.cli.display import create_transactions_table, format_timestamp, print_failures
from reap.core.state import StateManager
from reap.models.transaction import Transaction
from reap.utils.formatting import console, print_error, print_info

app = typer.Typer(
    name="history",
    help="View the transaction journal.",
    invoke_without_command=True,
)


@app.callback(invoke_without_command=True)
def history(
    ctx: typer.Context,
    limit: Annotated[
        int,
        typer.Option(
            "--limit",
            "-n",
            help="Maximum number of transactions to show.",
        ),
    ] = 20,
    txn_id: Annotated[
        str | None,
        typer.Option(
            "--id",
            help="Show one transaction in detail (id or unique prefix).",
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output as JSON.",
        ),
    ] = False,
) -> None:
    """Show past transactions.

    Each transaction shows its final state, packages and the snapshot it
    is bound to.

    Examples:
        reap history              # Show last 20 transactions
        reap history -n 50
        reap history --id 3f2a    # Details of one transaction
        reap history --json       # JSON output for scripting
    """
    if ctx.invoked_subcommand is not None:
        return

    state = StateManager()

    if txn_id is not None:
        txn = state.get_transaction(txn_id)
        if txn is None:
            print_error(f"No unique transaction matches {txn_id!r}")
            raise typer.Exit(code=1)
        if json_output:
            console.print_json(json.dumps(txn.to_dict()))
        else:
            _print_detail(txn)
        return

    transactions = state.get_transactions(limit=limit)
    if not transactions:
        print_info("No transactions recorded.")
        return

    if json_output:
        console.print_json(json.dumps([txn.to_dict() for txn in transactions]))
    else:
        console.print(create_transactions_table(transactions))


def _print_detail(txn: Transaction) -> None:
    """Print the full lifecycle of one transaction.

    Args:
        txn: The transaction to display.
    """
    console.print(f"\n[bold]Transaction {txn.id}[/bold] ({txn.state.value})")
    console.print(f"  Snapshot: {txn.snapshot_id}")
    console.print(f"  Packages: {' '.join(txn.plan.names)}")
    if txn.applied:
        console.print(f"  Applied: {' '.join(txn.applied)}")
    console.print("  States:")
    for state, stamp in txn.history:
        console.print(f"    {format_timestamp(stamp)}  {state}")
    for override in txn.overrides:
        console.print(
            f"  [warning]Override[/warning] {override.package}: {'; '.join(override.reasons)}"
        )
    print_failures(txn.failures)
