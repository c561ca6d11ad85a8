"""State management for the transaction journal and sandbox runs.

The journal is an append-only JSONL file: every state transition of a
transaction appends a full snapshot of it, and readers keep the last
line per transaction id. Sandbox runs are stored one JSON document per
run next to their captured log.
"""

import json
import logging
import threading
from pathlib import Path

from reap.core.paths import get_state_dir
from reap.models.sandbox import SandboxRun
from reap.models.transaction import Transaction

logger = logging.getLogger(__name__)


class StateManager:
    """Manages persisted transactions and sandbox runs.

    Storage location: ~/.local/state/reap/

    Attributes:
        state_dir: Directory containing the journal and run store.
    """

    JOURNAL_FILENAME = "transactions.jsonl"
    RUNS_DIRNAME = "runs"

    # Appends from concurrent transactions in one process must not interleave
    _write_lock = threading.Lock()

    def __init__(self, state_dir: Path | None = None) -> None:
        """Initialize StateManager.

        Args:
            state_dir: Optional override for the state directory.
                Default: ~/.local/state/reap
        """
        self._state_dir = state_dir if state_dir is not None else get_state_dir()

    @property
    def state_dir(self) -> Path:
        """Directory holding all persisted state."""
        return self._state_dir

    @property
    def journal_path(self) -> Path:
        """Path to the transactions.jsonl journal."""
        return self._state_dir / self.JOURNAL_FILENAME

    @property
    def runs_dir(self) -> Path:
        """Directory holding persisted sandbox runs."""
        return self._state_dir / self.RUNS_DIRNAME

    # -- transaction journal -------------------------------------------------

    def record_transaction(self, txn: Transaction) -> None:
        """Append the current state of a transaction to the journal.

        Raises:
            OSError: If the journal cannot be written.
        """
        line = json.dumps(txn.to_dict(), separators=(",", ":"))
        with self._write_lock:
            self._state_dir.mkdir(parents=True, exist_ok=True)
            with self.journal_path.open(mode="a", encoding="utf-8") as f:
                f.write(line + "\n")
                f.flush()
        logger.debug("Journaled transaction %s in state %s", txn.id, txn.state.value)

    def get_transactions(self, limit: int | None = None) -> list[Transaction]:
        """Read the latest state of every transaction, newest first.

        Args:
            limit: Maximum number of transactions to return.

        Returns:
            Transactions ordered by creation time, newest first. Returns
            an empty list if the journal doesn't exist.
        """
        if not self.journal_path.exists():
            return []

        latest: dict[str, Transaction] = {}
        with self.journal_path.open(encoding="utf-8") as f:
            for line_num, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    txn = Transaction.from_dict(json.loads(line))
                except (json.JSONDecodeError, KeyError, ValueError) as e:
                    logger.warning("Skipping corrupt journal line %d: %s", line_num, e)
                    continue
                latest[txn.id] = txn

        transactions = sorted(latest.values(), key=lambda t: t.created, reverse=True)
        if limit is not None:
            return transactions[:limit]
        return transactions

    def get_transaction(self, txn_id: str) -> Transaction | None:
        """Find the latest state of a transaction by id (or unique prefix)."""
        matches = [t for t in self.get_transactions() if t.id.startswith(txn_id)]
        if len(matches) == 1:
            return matches[0]
        return None

    def in_flight_snapshot_ids(self) -> set[str]:
        """Snapshot ids bound to pending or committing transactions."""
        return {t.snapshot_id for t in self.get_transactions() if t.in_flight}

    # -- sandbox runs --------------------------------------------------------

    def run_log_path(self, run_id: str) -> Path:
        """Path of the captured output for a sandbox run."""
        return self.runs_dir / f"{run_id}.log"

    def save_run(self, run: SandboxRun) -> Path:
        """Persist a sandbox run as JSON.

        Raises:
            OSError: If the run cannot be written.
        """
        self.runs_dir.mkdir(parents=True, exist_ok=True)
        path = self.runs_dir / f"{run.id}.json"
        path.write_text(json.dumps(run.to_dict(), indent=2), encoding="utf-8")
        return path

    def get_run(self, run_id: str) -> SandboxRun | None:
        """Load a sandbox run by id."""
        path = self.runs_dir / f"{run_id}.json"
        if not path.exists():
            return None
        return self._load_run(path)

    def get_runs(self, package: str | None = None) -> list[SandboxRun]:
        """Load persisted runs, newest first, optionally for one package."""
        if not self.runs_dir.is_dir():
            return []
        runs = [
            run
            for path in self.runs_dir.glob("*.json")
            if (run := self._load_run(path)) is not None
            and (package is None or run.record.name == package)
        ]
        return sorted(runs, key=lambda r: r.started, reverse=True)

    def latest_run(self, package: str) -> SandboxRun | None:
        """Most recent sandbox run for a package."""
        runs = self.get_runs(package)
        return runs[0] if runs else None

    def _load_run(self, path: Path) -> SandboxRun | None:
        try:
            return SandboxRun.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, json.JSONDecodeError, KeyError, ValueError) as e:
            logger.warning("Skipping unreadable run %s: %s", path.name, e)
            return None
