"""Install plan models.

An InstallPlan is the flattened, topologically ordered result of
dependency expansion. Each node remembers why its backend was chosen so
audits can trace the decision.
"""

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, Literal

from reap.models.record import BackendOrigin, PackageRecord

SelectionReason = Literal["pinned", "preference", "only-candidate"]


@dataclass(frozen=True, slots=True)
class PlanNode:
    """A single package in an install plan.

    Attributes:
        record: The selected package record.
        reason: Why this backend was chosen.
        alternatives: Other backends that could provide the same name.
        requested: Whether the user asked for this package directly.
        required_by: Names of plan nodes depending on this one.
        depends_on: Keys of plan nodes this one depends on.
    """

    record: PackageRecord
    reason: SelectionReason
    alternatives: tuple[BackendOrigin, ...] = ()
    requested: bool = False
    required_by: tuple[str, ...] = ()
    depends_on: tuple[str, ...] = ()

    @property
    def name(self) -> str:
        """Package name of this node."""
        return self.record.name

    @property
    def key(self) -> str:
        """Unique ``origin:name`` key of this node."""
        return self.record.key

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON storage."""
        return {
            "record": self.record.to_dict(),
            "reason": self.reason,
            "alternatives": [origin.value for origin in self.alternatives],
            "requested": self.requested,
            "required_by": list(self.required_by),
            "depends_on": list(self.depends_on),
        }


@dataclass(frozen=True, slots=True)
class InstallPlan:
    """Ordered sequence of plan nodes.

    Invariants: nodes are a valid linearization of the dependency edges,
    and a name appears twice only for explicitly requested backend
    variants.

    Attributes:
        nodes: Plan nodes in install order.
        requests: The original request strings.
    """

    nodes: tuple[PlanNode, ...]
    requests: tuple[str, ...] = field(default=())

    def __post_init__(self) -> None:
        """Validate plan invariants after initialization."""
        seen: set[str] = set()
        position: dict[str, int] = {}
        for index, node in enumerate(self.nodes):
            if node.key in seen:
                msg = f"Duplicate plan node: {node.key}"
                raise ValueError(msg)
            seen.add(node.key)
            position[node.key] = index

        names = [node.name for node in self.nodes]
        for node in self.nodes:
            if names.count(node.name) > 1 and not node.requested:
                msg = f"Package {node.name} appears twice without explicit disambiguation"
                raise ValueError(msg)
            for dep_key in node.depends_on:
                if dep_key in position and position[dep_key] > position[node.key]:
                    msg = f"Plan order violates dependency {node.key} -> {dep_key}"
                    raise ValueError(msg)

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self) -> Iterator[PlanNode]:
        return iter(self.nodes)

    @property
    def names(self) -> list[str]:
        """Package names in install order."""
        return [node.name for node in self.nodes]

    @property
    def records(self) -> list[PackageRecord]:
        """Package records in install order."""
        return [node.record for node in self.nodes]

    def get(self, key_or_name: str) -> PlanNode | None:
        """Find a node by ``origin:name`` key or plain name."""
        for node in self.nodes:
            if key_or_name in (node.key, node.name):
                return node
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON storage."""
        return {
            "requests": list(self.requests),
            "nodes": [node.to_dict() for node in self.nodes],
        }
