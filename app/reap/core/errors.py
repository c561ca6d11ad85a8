"""Error taxonomy for the install lifecycle.

Resolution and audit errors are reported per package without aborting
sibling work. Anything raised after a checkpoint but before commit is
recovered by rollback, except RestoreFailedError, the most severe
failure class reap produces.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence


class ReapError(Exception):
    """Base exception for all reap errors."""

    stage: str = "unknown"


class ConfigError(ReapError):
    """Raised when the configuration file cannot be loaded or is invalid."""

    stage = "config"


class NotFoundError(ReapError):
    """Raised when no backend reports a package."""

    stage = "resolve"

    def __init__(
        self,
        name: str,
        statuses: Mapping[str, str] | None = None,
        reason: str | None = None,
    ) -> None:
        self.name = name
        self.statuses = dict(statuses or {})
        self.reason = reason
        msg = f"Package not found: {name}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class BackendUnavailableError(ReapError):
    """Raised when every queried backend was unreachable.

    Partial unavailability is reported through resolution statuses
    instead of this exception.
    """

    stage = "resolve"

    def __init__(self, name: str, statuses: Mapping[str, str]) -> None:
        self.name = name
        self.statuses = dict(statuses)
        backends = ", ".join(sorted(self.statuses)) or "none"
        super().__init__(f"No backend reachable while resolving {name} (tried: {backends})")


class CycleDetectedError(ReapError):
    """Raised when dependency expansion finds a cycle."""

    stage = "plan"

    def __init__(self, cycle: Sequence[str]) -> None:
        self.cycle = list(cycle)
        super().__init__(f"Dependency cycle detected: {' -> '.join(self.cycle)}")


class VersionConflictError(ReapError):
    """Raised when two requirers need incompatible versions of one package."""

    stage = "plan"

    def __init__(
        self,
        name: str,
        first: tuple[str, str],
        second: tuple[str, str],
    ) -> None:
        self.name = name
        self.first = first
        self.second = second
        msg = (
            f"Version conflict on {name}: {first[0]} requires {first[1]!r}, "
            f"{second[0]} requires {second[1]!r}"
        )
        super().__init__(msg)

    @property
    def requirers(self) -> tuple[str, str]:
        """Names of both requirers."""
        return self.first[0], self.second[0]


class AuditBlockedError(ReapError):
    """Raised when a blocked audit verdict reaches commit without override."""

    stage = "audit"

    def __init__(self, name: str, reasons: Sequence[str] = ()) -> None:
        self.name = name
        self.reasons = list(reasons)
        msg = f"Audit blocked {name}"
        if self.reasons:
            msg += ": " + "; ".join(self.reasons)
        super().__init__(msg)


class NoSandboxBackendError(ReapError):
    """Raised when no configured sandbox backend is available on the host."""

    stage = "sandbox"

    def __init__(self, tried: Sequence[str]) -> None:
        self.tried = list(tried)
        tried_str = ", ".join(self.tried) or "none configured"
        super().__init__(f"No sandbox backend available (tried: {tried_str})")


class SandboxRunFailedError(ReapError):
    """Raised by callers that treat a failed sandbox run as fatal."""

    stage = "sandbox"

    def __init__(self, name: str, status: str, detail: str | None = None) -> None:
        self.name = name
        self.status = status
        msg = f"Sandbox run for {name} ended {status}"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class InstallAbortedError(ReapError):
    """Raised when a plan node fails while the transaction is committing."""

    stage = "commit"

    def __init__(self, name: str, detail: str) -> None:
        self.name = name
        self.detail = detail
        super().__init__(f"Install of {name} aborted: {detail}")


class RestoreFailedError(ReapError):
    """Raised when restoring a snapshot fails.

    Never retried; the host needs manual intervention.
    """

    stage = "restore"

    def __init__(self, snapshot_id: str, failures: Sequence[str]) -> None:
        self.snapshot_id = snapshot_id
        self.failures = list(failures)
        msg = (
            f"Restore of snapshot {snapshot_id} failed for {len(self.failures)} item(s); "
            "manual intervention required"
        )
        super().__init__(msg)


class SnapshotNotFoundError(ReapError):
    """Raised when a snapshot id cannot be found."""

    stage = "restore"


class SnapshotInUseError(ReapError):
    """Raised when deleting a snapshot bound to an in-flight transaction."""

    stage = "prune"


class InvalidTransitionError(ReapError):
    """Raised when a transaction is moved along an illegal edge."""

    stage = "commit"


class HookFailedError(ReapError):
    """Raised when a blocking lifecycle hook fails."""

    stage = "hook"

    def __init__(self, point: str, name: str, detail: str) -> None:
        self.point = point
        self.name = name
        super().__init__(f"Hook {point} failed for {name}: {detail}")


class CancelledError(ReapError):
    """Raised when cooperative cancellation interrupts a stage."""

    stage = "cancel"

    def __init__(self, stage: str) -> None:
        self.interrupted = stage
        super().__init__(f"Cancelled during {stage}")


class TransactionInterruptedError(ReapError):
    """Recorded on a transaction whose process died while it was in flight."""

    stage = "recover"

    def __init__(self, txn_id: str, state: str) -> None:
        self.txn_id = txn_id
        super().__init__(f"Transaction {txn_id} was interrupted while {state}")
