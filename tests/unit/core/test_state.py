"""Unit tests for StateManager.

Tests for the transaction journal and sandbox run persistence.
"""

from collections.abc import Callable
from pathlib import Path

import pytest
from reap.core.state import StateManager
from reap.models.plan import InstallPlan, PlanNode
from reap.models.record import PackageRecord
from reap.models.sandbox import FileChange, RunStatus, SandboxKind, SandboxRun
from reap.models.transaction import Transaction, TransactionState


@pytest.fixture
def state(tmp_path: Path) -> StateManager:
    """StateManager rooted in a temporary directory."""
    return StateManager(tmp_path / "state")


@pytest.fixture
def make_txn(make_record: Callable[..., PackageRecord]) -> Callable[[str], Transaction]:
    """Factory for pending transactions over a single package."""

    def factory(name: str) -> Transaction:
        node = PlanNode(record=make_record(name), reason="only-candidate", requested=True)
        return Transaction.create(InstallPlan(nodes=(node,), requests=(name,)), f"snap-{name}")

    return factory


class TestJournal:
    """Tests for the transaction journal."""

    def test_empty_without_journal(self, state: StateManager) -> None:
        """No journal means no transactions."""
        assert state.get_transactions() == []

    def test_latest_state_wins(
        self, state: StateManager, make_txn: Callable[[str], Transaction]
    ) -> None:
        """Every transition is appended; readers see the last one."""
        txn = make_txn("foo")
        state.record_transaction(txn)
        txn.transition(TransactionState.COMMITTING)
        state.record_transaction(txn)
        txn.transition(TransactionState.COMMITTED)
        state.record_transaction(txn)

        lines = state.journal_path.read_text().splitlines()
        transactions = state.get_transactions()

        assert len(lines) == 3
        assert len(transactions) == 1
        assert transactions[0].state == TransactionState.COMMITTED

    def test_corrupt_lines_skipped(
        self, state: StateManager, make_txn: Callable[[str], Transaction]
    ) -> None:
        """Corrupt journal lines are skipped with a warning."""
        state.record_transaction(make_txn("foo"))
        with state.journal_path.open("a") as f:
            f.write("{not json\n")

        assert len(state.get_transactions()) == 1

    def test_get_by_prefix(
        self, state: StateManager, make_txn: Callable[[str], Transaction]
    ) -> None:
        """Transactions can be found by unique id prefix."""
        txn = make_txn("foo")
        state.record_transaction(txn)

        found = state.get_transaction(txn.id[:6])

        assert found is not None
        assert found.id == txn.id
        assert state.get_transaction("zzzz") is None

    def test_in_flight_snapshots(
        self, state: StateManager, make_txn: Callable[[str], Transaction]
    ) -> None:
        """Only pending and committing transactions pin their snapshot."""
        pending = make_txn("foo")
        done = make_txn("bar")
        done.transition(TransactionState.COMMITTING)
        done.transition(TransactionState.COMMITTED)
        state.record_transaction(pending)
        state.record_transaction(done)

        assert state.in_flight_snapshot_ids() == {"snap-foo"}

    def test_limit(self, state: StateManager, make_txn: Callable[[str], Transaction]) -> None:
        """limit caps the number of transactions returned."""
        for name in ("a", "b", "c"):
            state.record_transaction(make_txn(name))

        assert len(state.get_transactions(limit=2)) == 2


class TestRuns:
    """Tests for sandbox run persistence."""

    def _run(self, record: PackageRecord, run_id: str, started: str) -> SandboxRun:
        return SandboxRun(
            id=run_id,
            record=record,
            backend=SandboxKind.BUBBLEWRAP,
            status=RunStatus.SUCCEEDED,
            exit_code=0,
            duration=1.5,
            changes=(FileChange(path="/usr/bin/foo", kind="added", sha256="ab"),),
            started=started,
        )

    def test_save_and_get(
        self, state: StateManager, make_record: Callable[..., PackageRecord]
    ) -> None:
        """A saved run loads back identically."""
        run = self._run(make_record("foo"), "run1", "2026-10-17T10:00:00+00:00")
        state.save_run(run)

        assert state.get_run("run1") == run
        assert state.get_run("missing") is None

    def test_latest_run_per_package(
        self, state: StateManager, make_record: Callable[..., PackageRecord]
    ) -> None:
        """latest_run picks the newest run of the package."""
        state.save_run(self._run(make_record("foo"), "old", "2026-10-17T10:00:00+00:00"))
        state.save_run(self._run(make_record("foo"), "new", "2026-10-17T11:00:00+00:00"))
        state.save_run(self._run(make_record("bar"), "other", "2026-10-17T12:00:00+00:00"))

        latest = state.latest_run("foo")

        assert latest is not None
        assert latest.id == "new"
        assert [r.id for r in state.get_runs()] == ["other", "new", "old"]
        assert state.latest_run("baz") is None

    def test_unreadable_run_skipped(
        self, state: StateManager, make_record: Callable[..., PackageRecord]
    ) -> None:
        """Unreadable run files are skipped."""
        state.save_run(self._run(make_record("foo"), "ok", "2026-10-17T10:00:00+00:00"))
        (state.runs_dir / "broken.json").write_text("{}")

        assert [r.id for r in state.get_runs()] == ["ok"]
