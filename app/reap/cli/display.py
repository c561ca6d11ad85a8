"""Shared Rich display functions for plans, audits, runs and transactions.

Provides reusable table builders and summary printers used across CLI
commands (install, test, upgrade, history, snapshots).
"""

from collections.abc import Iterable
from datetime import datetime

from rich.table import Table

from reap.core.doctor import DoctorCheck
from reap.core.pipeline import PipelineReport
from reap.models.audit import AuditResult
from reap.models.plan import InstallPlan
from reap.models.record import PackageRecord
from reap.models.sandbox import SandboxRun
from reap.models.snapshot import Snapshot
from reap.models.transaction import StageFailure, Transaction, TransactionState
from reap.utils.formatting import (
    console,
    create_table,
    format_verdict,
    print_error,
    print_success,
    print_warning,
)

_STATE_STYLES = {
    TransactionState.PENDING: "info",
    TransactionState.COMMITTING: "info",
    TransactionState.COMMITTED: "success",
    TransactionState.FAILED: "error",
    TransactionState.ROLLED_BACK: "warning",
}


def format_timestamp(iso_timestamp: str) -> str:
    """Format an ISO timestamp as ``YYYY-MM-DD HH:MM``."""
    dt = datetime.fromisoformat(iso_timestamp.replace("Z", "+00:00"))
    return dt.strftime("%Y-%m-%d %H:%M")


def create_records_table(records: Iterable[PackageRecord], title: str = "Results") -> Table:
    """Create a table of search results."""
    table = create_table(title, "Package", "Version", "Origin", "Description")
    for record in records:
        table.add_row(
            f"[package.name]{record.name}[/]",
            f"[package.version]{record.version}[/]",
            f"[origin]{record.origin.label}[/]",
            f"[muted]{record.description or ''}[/muted]",
        )
    return table


def create_plan_table(plan: InstallPlan, dry_run: bool = False) -> Table:
    """Create a table displaying an install plan in install order.

    Args:
        plan: The plan to display.
        dry_run: Whether nothing will be installed (changes title).

    Returns:
        Rich Table configured for plan display.
    """
    title = "Install Plan (Dry Run)" if dry_run else "Install Plan"
    table = create_table(title, "#", "Package", "Version", "Origin", "Reason", "Alternatives")
    for index, node in enumerate(plan, start=1):
        name = f"[package.name]{node.name}[/]"
        if not node.requested:
            name += " [muted](dep)[/muted]"
        table.add_row(
            str(index),
            name,
            f"[package.version]{node.record.version}[/]",
            f"[origin]{node.record.origin.label}[/]",
            node.reason,
            ", ".join(origin.value for origin in node.alternatives) or "-",
        )
    return table


def create_audit_table(results: Iterable[AuditResult]) -> Table:
    """Create a table of audit verdicts with their components."""
    table = create_table("Audit", "Package", "Verdict", "Signature", "Recipe", "Findings")
    for result in results:
        findings = ", ".join(sorted({f.rule for f in result.findings})) or "-"
        table.add_row(
            result.record.key,
            format_verdict(result.verdict),
            result.signature.value,
            result.diff_status.value,
            findings,
        )
    return table


def create_runs_table(runs: Iterable[SandboxRun]) -> Table:
    """Create a table summarizing sandbox runs."""
    table = create_table("Sandbox Runs", "Run", "Package", "Backend", "Status", "Time", "Changes")
    for run in runs:
        style = "success" if run.succeeded else "error"
        status = run.status.value
        if run.failed_step:
            status += f" ({run.failed_step})"
        table.add_row(
            run.id,
            run.record.key,
            run.backend.value,
            f"[{style}]{status}[/]",
            f"{run.duration:.1f}s",
            str(len(run.changes)),
        )
    return table


def create_transactions_table(transactions: Iterable[Transaction]) -> Table:
    """Create a table of journaled transactions."""
    table = create_table("Transactions", "ID", "Created", "State", "Packages", "Snapshot")
    for txn in transactions:
        names = txn.plan.names
        packages = ", ".join(names[:3])
        if len(names) > 3:
            packages += f" (+{len(names) - 3} more)"
        style = _STATE_STYLES[txn.state]
        table.add_row(
            txn.id[:8],
            format_timestamp(txn.created),
            f"[{style}]{txn.state.value}[/]",
            packages,
            txn.snapshot_id[:8],
        )
    return table


def create_snapshots_table(snapshots: Iterable[Snapshot], in_use: set[str]) -> Table:
    """Create a table of stored snapshots."""
    table = create_table("Snapshots", "ID", "Created", "Packages", "Files", "Label")
    for snapshot in snapshots:
        snapshot_id = snapshot.id[:8]
        if snapshot.id in in_use:
            snapshot_id += " [warning](in use)[/warning]"
        table.add_row(
            snapshot_id,
            format_timestamp(snapshot.timestamp),
            ", ".join(p.name for p in snapshot.packages) or "-",
            str(len(snapshot.files)),
            snapshot.label or "-",
        )
    return table


def create_doctor_table(checks: Iterable[DoctorCheck]) -> Table:
    """Create a table of doctor checks."""
    table = create_table("Doctor", "Check", "Result", "Detail")
    for check in checks:
        if check.passed:
            result = "[success]ok[/]"
        elif check.required:
            result = "[error]FAIL[/]"
        else:
            result = "[warning]missing[/]"
        table.add_row(check.name, result, f"[muted]{check.detail}[/muted]")
    return table


def print_failures(failures: Iterable[StageFailure]) -> None:
    """Print per-package failures with their stage."""
    failures = list(failures)
    if not failures:
        return
    console.print("\n[error]Failures:[/error]")
    for failure in failures:
        restored = ""
        if failure.restored is True:
            restored = " [muted](host restored)[/muted]"
        elif failure.restored is False:
            restored = " [error](restore failed)[/error]"
        console.print(
            f"  - {failure.package} [{failure.stage}] {failure.error}: {failure.message}{restored}"
        )
    console.print()


def print_report(report: PipelineReport, dry_run: bool = False) -> None:
    """Print everything a pipeline run produced.

    Args:
        report: The pipeline report.
        dry_run: Whether the run stopped before committing on purpose.
    """
    if report.statuses:
        details = ", ".join(f"{name}={status}" for name, status in sorted(report.statuses.items()))
        console.print(f"[muted]Backends: {details}[/muted]")
    if report.plan is not None:
        console.print(create_plan_table(report.plan, dry_run=dry_run))
    if report.audits:
        console.print(create_audit_table(report.audits[key] for key in sorted(report.audits)))
    for override in report.overrides:
        print_warning(f"Audit override for {override.package}: {'; '.join(override.reasons)}")
    if report.runs:
        console.print(create_runs_table(report.runs[key] for key in sorted(report.runs)))

    print_failures(report.failures)

    txn = report.transaction
    if txn is not None:
        console.print(create_transactions_table([txn]))
        if report.committed:
            print_success(f"Transaction {txn.id} committed.")
        else:
            print_error(f"Transaction {txn.id} ended {txn.state.value}.")
    elif report.ok and report.plan is not None:
        print_success(f"{len(report.plan)} package(s) vetted.")
