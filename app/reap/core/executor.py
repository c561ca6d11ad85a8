"""Install executor.

Owns the transaction state machine. ``begin`` checkpoints the host and
creates a pending transaction; ``commit`` applies the plan under the
global writer lock and, on any failure or cancellation, restores the
checkpoint before returning.

Only one transaction may be committing at a time, across threads of
this process and across processes, enforced by WriterLock. Transactions
left in flight by a process that died are closed out by ``recover``
before the next checkpoint.
"""

import fcntl
import logging
import os
import threading
import time
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from pathlib import Path

from reap.core.config import HookPoint
from reap.core.errors import (
    AuditBlockedError,
    CancelledError,
    HookFailedError,
    InstallAbortedError,
    ReapError,
    RestoreFailedError,
    SandboxRunFailedError,
    TransactionInterruptedError,
)
from reap.core.hooks import HookContext, HookRegistry
from reap.core.snapshot import SnapshotManager
from reap.core.state import StateManager
from reap.models.plan import InstallPlan, PlanNode
from reap.models.record import BackendOrigin
from reap.models.transaction import AuditOverride, StageFailure, Transaction, TransactionState
from reap.models.unit import VettedUnit
from reap.operators.base import Operator
from reap.utils.cancel import CancelToken

logger = logging.getLogger(__name__)

# One in-process lock per lock file, shared by every WriterLock instance
_PROCESS_LOCKS: dict[str, threading.Lock] = {}
_REGISTRY_LOCK = threading.Lock()


def _process_lock(path: Path) -> threading.Lock:
    key = str(path.resolve())
    with _REGISTRY_LOCK:
        return _PROCESS_LOCKS.setdefault(key, threading.Lock())


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # alive, owned by another user
        pass
    return True


class WriterLock:
    """Global single-writer lock (thread lock plus ``flock`` on a file).

    Attributes:
        path: Lock file path.
    """

    def __init__(self, path: Path, poll_interval: float = 0.1) -> None:
        self.path = path
        self._poll = poll_interval
        self._thread_lock = _process_lock(path)

    @contextmanager
    def hold(self, cancel: CancelToken | None = None) -> Iterator[None]:
        """Block until the lock is held; release on exit.

        Raises:
            CancelledError: If cancelled while waiting.
        """
        while not self._thread_lock.acquire(timeout=self._poll):
            if cancel is not None:
                cancel.raise_if_cancelled("lock")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a+", encoding="utf-8") as lf:
                while True:
                    try:
                        fcntl.flock(lf.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                        break
                    except BlockingIOError:
                        if cancel is not None:
                            cancel.raise_if_cancelled("lock")
                        time.sleep(self._poll)
                logger.debug("Writer lock acquired")
                try:
                    yield
                finally:
                    fcntl.flock(lf.fileno(), fcntl.LOCK_UN)
                    logger.debug("Writer lock released")
        finally:
            self._thread_lock.release()


class InstallExecutor:
    """Applies vetted plans to the host transactionally."""

    def __init__(
        self,
        operators: Sequence[Operator],
        snapshots: SnapshotManager,
        state: StateManager,
        hooks: HookRegistry | None = None,
        lock: WriterLock | None = None,
    ) -> None:
        self._operators = list(operators)
        self._snapshots = snapshots
        self._state = state
        self._hooks = hooks or HookRegistry()
        self._lock = lock or WriterLock(state.state_dir / "writer.lock")

    @property
    def lock(self) -> WriterLock:
        """The writer lock guarding host mutation."""
        return self._lock

    def operator_for(self, origin: BackendOrigin) -> Operator:
        """Find the operator installing packages from an origin.

        Raises:
            RuntimeError: If no operator handles the origin.
        """
        for operator in self._operators:
            if operator.handles(origin):
                return operator
        msg = f"No operator installs {origin.value} packages"
        raise RuntimeError(msg)

    def begin(
        self,
        plan: InstallPlan,
        units: Mapping[str, VettedUnit],
        overrides: Iterable[AuditOverride] = (),
    ) -> Transaction:
        """Checkpoint the host and create a pending transaction.

        Args:
            plan: The plan to apply.
            units: Vetted units keyed by plan node key.
            overrides: Audit overrides for this transaction.

        Raises:
            AuditBlockedError: If a blocked node has no override.
            SandboxRunFailedError: If a node has no successful sandbox run.
            InstallAbortedError: If a node was never vetted.
            RestoreFailedError: If an interrupted earlier commit could not be
                rolled back.
            OSError: If the checkpoint cannot be written.
        """
        overrides = list(overrides)
        self._guard(plan, units, overrides)
        self.recover()

        paths = sorted({path for unit in units.values() for path in unit.run.touched_paths})
        snapshot = self._snapshots.checkpoint(
            paths, packages=plan.names, label=" ".join(plan.requests) or None
        )
        txn = Transaction.create(plan, snapshot.id, overrides)
        self._state.record_transaction(txn)
        logger.info("Transaction %s pending (snapshot %s)", txn.id, snapshot.id)
        return txn

    def commit(
        self,
        txn: Transaction,
        units: Mapping[str, VettedUnit],
        cancel: CancelToken | None = None,
    ) -> Transaction:
        """Apply a pending transaction.

        On failure the snapshot is restored and the transaction ends
        ``rolled-back`` with the failure recorded. A transaction that
        fails before it starts committing ends ``failed`` with the host
        untouched. An interrupt (KeyboardInterrupt, SystemExit) is
        rolled back the same way and then re-raised.

        Returns:
            The transaction in its final state.

        Raises:
            RestoreFailedError: If rollback itself failed; the host needs
                manual intervention.
        """
        try:
            self._guard(txn.plan, units, txn.overrides)
            with self._lock.hold(cancel):
                self._apply(txn, units, cancel)
        except (AuditBlockedError, SandboxRunFailedError, InstallAbortedError, CancelledError) as e:
            if txn.state != TransactionState.PENDING:
                raise
            self._fail_pending(txn, e)
        except BaseException as e:
            if txn.state == TransactionState.PENDING:
                self._fail_pending(txn, e)
            raise
        return txn

    def rollback(self, snapshot_id: str, cancel: CancelToken | None = None) -> None:
        """Restore a snapshot under the writer lock.

        Raises:
            SnapshotNotFoundError: If the snapshot does not exist.
            RestoreFailedError: If restoring failed.
        """
        with self._lock.hold(cancel):
            self._snapshots.restore(snapshot_id)

    def recover(self, cancel: CancelToken | None = None) -> list[Transaction]:
        """Close out transactions left in flight by a dead process.

        A ``committing`` entry seen while holding the writer lock belongs
        to a writer that died mid-commit: its snapshot is restored and it
        ends ``rolled-back``. A ``pending`` entry whose process is gone
        ends ``failed``; it never touched the host.

        Returns:
            The transactions that were closed.

        Raises:
            RestoreFailedError: If an interrupted commit could not be
                rolled back.
        """
        if not any(self._stale(txn) for txn in self._state.get_transactions()):
            return []
        recovered: list[Transaction] = []
        with self._lock.hold(cancel):
            for txn in self._state.get_transactions():
                if not self._stale(txn):
                    continue
                error = TransactionInterruptedError(txn.id, txn.state.value)
                if txn.state == TransactionState.COMMITTING:
                    self._roll_back(txn, "*", error)
                else:
                    self._fail_pending(txn, error)
                recovered.append(txn)
        if recovered:
            logger.warning("Recovered %d interrupted transaction(s)", len(recovered))
        return recovered

    @staticmethod
    def _stale(txn: Transaction) -> bool:
        if txn.state == TransactionState.COMMITTING:
            return True
        return txn.state == TransactionState.PENDING and not _pid_alive(txn.pid)

    def _guard(
        self,
        plan: InstallPlan,
        units: Mapping[str, VettedUnit],
        overrides: Iterable[AuditOverride],
    ) -> None:
        overridden = {o.package for o in overrides}
        for node in plan:
            unit = units.get(node.key)
            if unit is None:
                raise InstallAbortedError(node.name, "package was not vetted")
            if unit.audit.blocked and node.name not in overridden:
                raise AuditBlockedError(node.name, unit.audit.blocked_reasons)
            if unit.run.failed:
                raise SandboxRunFailedError(node.name, unit.run.status.value, unit.run.failed_step)

    def _apply(
        self, txn: Transaction, units: Mapping[str, VettedUnit], cancel: CancelToken | None
    ) -> None:
        txn.transition(TransactionState.COMMITTING)
        current: PlanNode | None = None
        try:
            self._state.record_transaction(txn)
            for node in txn.plan:
                current = node
                if cancel is not None:
                    cancel.raise_if_cancelled("commit")
                self._hooks.fire(self._context("pre_install", txn, node))
                result = self.operator_for(node.record.origin).install(units[node.key].artifact)
                if result.failed:
                    raise InstallAbortedError(node.name, result.error or "install failed")
                txn.applied.append(node.key)
                self._state.record_transaction(txn)
                self._hooks.fire(self._context("post_install", txn, node))
        except BaseException as e:
            self._roll_back(txn, current.name if current is not None else "*", e)
            if not isinstance(e, (ReapError, RuntimeError, OSError)):
                raise
            return

        txn.transition(TransactionState.COMMITTED)
        self._journal(txn)
        logger.info("Transaction %s committed %d package(s)", txn.id, len(txn.applied))

    def _fail_pending(self, txn: Transaction, error: BaseException) -> None:
        txn.transition(TransactionState.FAILED)
        txn.failures.append(StageFailure.from_exception(getattr(error, "name", "*"), error))
        self._journal(txn)
        logger.warning("Transaction %s failed before commit: %s", txn.id, error)

    def _roll_back(self, txn: Transaction, package: str, error: BaseException) -> None:
        stage = getattr(error, "stage", "commit")
        logger.error("Transaction %s failed at %s: %r", txn.id, package, error)
        txn.transition(TransactionState.FAILED)

        # Restore before any journal write; the journal may sit on the same full disk
        try:
            self._snapshots.restore(txn.snapshot_id)
        except ReapError as restore_error:
            txn.failures.append(
                StageFailure.from_exception(package, error, stage=stage, restored=False)
            )
            txn.failures.append(StageFailure.from_exception(package, restore_error))
            self._journal(txn)
            logger.critical("Rollback of %s failed; manual intervention required", txn.id)
            raise

        txn.failures.append(StageFailure.from_exception(package, error, stage=stage, restored=True))
        self._journal(txn)
        txn.transition(TransactionState.ROLLED_BACK)
        self._journal(txn)
        logger.warning("Transaction %s rolled back to snapshot %s", txn.id, txn.snapshot_id)

        node = txn.plan.get(package)
        if node is not None:
            try:
                self._hooks.fire(self._context("on_rollback", txn, node))
            except HookFailedError as e:
                logger.warning("on_rollback hook failed: %s", e)

    def _journal(self, txn: Transaction) -> None:
        """Journal a transaction, recording a write error on it instead of raising."""
        try:
            self._state.record_transaction(txn)
        except OSError as e:
            logger.error("Cannot journal transaction %s (%s): %s", txn.id, txn.state.value, e)
            txn.failures.append(StageFailure.from_exception("*", e, stage="journal"))

    @staticmethod
    def _context(point: HookPoint, txn: Transaction, node: PlanNode) -> HookContext:
        return HookContext(
            point=point,
            package=node.name,
            version=node.record.version,
            origin=node.record.origin.value,
            transaction_id=txn.id,
            tap=node.record.tap,
        )
