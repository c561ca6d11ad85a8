"""Transaction model and state machine.

States: pending -> committing -> {committed | failed -> rolled-back}.
A failed transaction whose restore also failed stays in ``failed``.
"""

import os
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from reap.core.errors import InvalidTransitionError
from reap.models.plan import InstallPlan, PlanNode
from reap.models.record import BackendOrigin, PackageRecord


class TransactionState(str, Enum):
    """Lifecycle states of a transaction."""

    PENDING = "pending"
    COMMITTING = "committing"
    COMMITTED = "committed"
    FAILED = "failed"
    ROLLED_BACK = "rolled-back"

    @property
    def terminal(self) -> bool:
        """Check if no further transition is expected from this state."""
        return self in (TransactionState.COMMITTED, TransactionState.ROLLED_BACK)


_TRANSITIONS: dict[TransactionState, frozenset[TransactionState]] = {
    TransactionState.PENDING: frozenset({TransactionState.COMMITTING, TransactionState.FAILED}),
    TransactionState.COMMITTING: frozenset(
        {TransactionState.COMMITTED, TransactionState.FAILED}
    ),
    TransactionState.FAILED: frozenset({TransactionState.ROLLED_BACK}),
    TransactionState.COMMITTED: frozenset(),
    TransactionState.ROLLED_BACK: frozenset(),
}


def _now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True, slots=True)
class AuditOverride:
    """Operator override of a blocked audit verdict.

    Overrides are scoped to the transaction that records them.

    Attributes:
        package: Name of the overridden package.
        reasons: Why the audit blocked it.
        timestamp: When the override was recorded.
    """

    package: str
    reasons: tuple[str, ...] = ()
    timestamp: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON storage."""
        return {"package": self.package, "reasons": list(self.reasons), "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuditOverride":
        """Deserialize from dictionary."""
        return cls(
            package=data["package"],
            reasons=tuple(data.get("reasons", [])),
            timestamp=data["timestamp"],
        )


@dataclass(frozen=True, slots=True)
class StageFailure:
    """A failure attributed to one package and one pipeline stage.

    Attributes:
        package: Package the failure belongs to.
        stage: Pipeline stage ('resolve', 'plan', 'audit', 'sandbox', 'commit', ...).
        error: Exception class name.
        message: Human-readable detail.
        restored: Whether the host state was restored afterwards (None if
            the failure happened before any host mutation).
    """

    package: str
    stage: str
    error: str
    message: str
    restored: bool | None = None

    @classmethod
    def from_exception(
        cls,
        package: str,
        exc: BaseException,
        stage: str | None = None,
        restored: bool | None = None,
    ) -> "StageFailure":
        """Build a failure record from an exception."""
        return cls(
            package=package,
            stage=stage or getattr(exc, "stage", "unknown"),
            error=type(exc).__name__,
            message=str(exc),
            restored=restored,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON storage."""
        return {
            "package": self.package,
            "stage": self.stage,
            "error": self.error,
            "message": self.message,
            "restored": self.restored,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StageFailure":
        """Deserialize from dictionary."""
        return cls(
            package=data["package"],
            stage=data["stage"],
            error=data["error"],
            message=data["message"],
            restored=data.get("restored"),
        )


@dataclass(slots=True)
class Transaction:
    """One attempt to apply an install plan to the host.

    Attributes:
        id: Unique identifier (12-character hex string from UUID).
        plan: The plan being applied.
        snapshot_id: Snapshot bound at creation.
        state: Current lifecycle state.
        created: Creation timestamp.
        overrides: Audit overrides recorded for this transaction.
        failures: Failures recorded during the transaction.
        applied: Keys of plan nodes installed on the host so far.
        history: (state, timestamp) pairs for every transition.
        committing_started: When the transaction entered ``committing``.
        committing_finished: When it left ``committing``.
        pid: Process that created the transaction.
    """

    id: str
    plan: InstallPlan
    snapshot_id: str
    state: TransactionState = TransactionState.PENDING
    created: str = field(default_factory=_now)
    overrides: list[AuditOverride] = field(default_factory=list)
    failures: list[StageFailure] = field(default_factory=list)
    applied: list[str] = field(default_factory=list)
    history: list[tuple[str, str]] = field(default_factory=list)
    committing_started: str | None = None
    committing_finished: str | None = None
    pid: int = field(default_factory=os.getpid)

    @classmethod
    def create(
        cls,
        plan: InstallPlan,
        snapshot_id: str,
        overrides: list[AuditOverride] | None = None,
    ) -> "Transaction":
        """Create a pending transaction bound to a plan and snapshot."""
        txn = cls(
            id=uuid.uuid4().hex[:12],
            plan=plan,
            snapshot_id=snapshot_id,
            overrides=list(overrides or []),
        )
        txn.history.append((txn.state.value, txn.created))
        return txn

    def transition(self, target: TransactionState) -> None:
        """Move to a new state along a legal edge.

        Raises:
            InvalidTransitionError: If the edge is not part of the state machine.
        """
        if target not in _TRANSITIONS[self.state]:
            msg = f"Transaction {self.id}: illegal transition {self.state.value} -> {target.value}"
            raise InvalidTransitionError(msg)

        stamp = _now()
        if target == TransactionState.COMMITTING:
            self.committing_started = stamp
        elif self.state == TransactionState.COMMITTING:
            self.committing_finished = stamp
        self.state = target
        self.history.append((target.value, stamp))

    def is_overridden(self, package: str) -> bool:
        """Check if a blocked verdict for a package was overridden here."""
        return any(o.package == package for o in self.overrides)

    @property
    def in_flight(self) -> bool:
        """Check if the transaction still references its snapshot actively."""
        return self.state in (TransactionState.PENDING, TransactionState.COMMITTING)

    @property
    def degraded(self) -> bool:
        """Check if the transaction ended without committing."""
        return self.state in (TransactionState.FAILED, TransactionState.ROLLED_BACK)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON storage."""
        return {
            "id": self.id,
            "plan": self.plan.to_dict(),
            "snapshot_id": self.snapshot_id,
            "state": self.state.value,
            "created": self.created,
            "overrides": [o.to_dict() for o in self.overrides],
            "failures": [f.to_dict() for f in self.failures],
            "applied": list(self.applied),
            "history": [list(h) for h in self.history],
            "committing_started": self.committing_started,
            "committing_finished": self.committing_finished,
            "pid": self.pid,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Transaction":
        """Deserialize from dictionary.

        Raises:
            KeyError: If required fields are missing.
            ValueError: If state or plan data is invalid.
        """
        plan_data = data["plan"]
        nodes = tuple(
            PlanNode(
                record=PackageRecord.from_dict(node["record"]),
                reason=node["reason"],
                alternatives=tuple(BackendOrigin(o) for o in node.get("alternatives", [])),
                requested=node.get("requested", False),
                required_by=tuple(node.get("required_by", [])),
                depends_on=tuple(node.get("depends_on", [])),
            )
            for node in plan_data.get("nodes", [])
        )
        return cls(
            id=data["id"],
            plan=InstallPlan(nodes=nodes, requests=tuple(plan_data.get("requests", []))),
            snapshot_id=data["snapshot_id"],
            state=TransactionState(data["state"]),
            created=data["created"],
            overrides=[AuditOverride.from_dict(o) for o in data.get("overrides", [])],
            failures=[StageFailure.from_dict(f) for f in data.get("failures", [])],
            applied=list(data.get("applied", [])),
            history=[(h[0], h[1]) for h in data.get("history", [])],
            committing_started=data.get("committing_started"),
            committing_finished=data.get("committing_finished"),
            pid=data.get("pid", 0),
        )
