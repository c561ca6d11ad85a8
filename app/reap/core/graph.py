"""Dependency graph builder.

Expands requested packages into the full dependency closure, picks one
backend per package, rejects cycles and version conflicts, and emits
the install plan in dependency order.

Expansion and ordering are deterministic: names are expanded breadth
first in alphabetical order, and ties in the topological sort are
broken by ``(name, origin)``.
"""

import heapq
import itertools
import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from functools import cmp_to_key

from reap.core.errors import CycleDetectedError, NotFoundError, VersionConflictError
from reap.core.resolver import Resolution, SourceResolver
from reap.models.plan import InstallPlan, PlanNode, SelectionReason
from reap.models.record import BackendOrigin, Dependency, PackageRecord
from reap.utils.cancel import CancelToken
from reap.utils.version import vercmp

logger = logging.getLogger(__name__)

# Requirer label for packages the user asked for directly
ROOT = "<request>"


def parse_request(request: str) -> tuple[Dependency, BackendOrigin | None]:
    """Split ``[origin:]name[op version]`` into a dependency and explicit origin.

    Raises:
        ValueError: If the request is not a valid package spec.
    """
    origin: BackendOrigin | None = None
    spec = request.strip()
    prefix, sep, rest = spec.partition(":")
    if sep:
        try:
            origin = BackendOrigin(prefix)
        except ValueError:
            pass
        else:
            spec = rest
    return Dependency.parse(spec), origin


@dataclass(slots=True)
class _Selection:
    record: PackageRecord
    reason: SelectionReason
    alternatives: tuple[BackendOrigin, ...]
    requested: bool = False
    required_by: set[str] = field(default_factory=set)
    depends_on: set[str] = field(default_factory=set)


def find_cycle(edges: Mapping[str, Iterable[str]]) -> list[str] | None:
    """Find a dependency cycle with an iterative depth-first search.

    Args:
        edges: Node to dependencies mapping.

    Returns:
        The closed loop (first node repeated at the end), or None.
    """
    visiting, done = 1, 2
    color: dict[str, int] = {}
    for start in sorted(edges):
        if start in color:
            continue
        color[start] = visiting
        path = [start]
        stack = [iter(sorted(edges.get(start, ())))]
        while stack:
            for child in stack[-1]:
                state = color.get(child)
                if state == visiting:
                    return [*path[path.index(child):], child]
                if state is None:
                    color[child] = visiting
                    path.append(child)
                    stack.append(iter(sorted(edges.get(child, ()))))
                    break
            else:
                color[path.pop()] = done
                stack.pop()
    return None


def topological_order(
    edges: Mapping[str, Iterable[str]],
    sort_key: Mapping[str, tuple[str, ...]] | None = None,
) -> list[str]:
    """Order nodes so every node comes after its dependencies (Kahn).

    Args:
        edges: Node to dependencies mapping; every node must be a key.
        sort_key: Tie-break key per node; defaults to the node itself.

    Raises:
        ValueError: If the graph contains a cycle.
    """
    keys = sort_key or {node: (node,) for node in edges}
    remaining = {node: len(set(deps)) for node, deps in edges.items()}
    dependents: dict[str, list[str]] = defaultdict(list)
    for node, deps in edges.items():
        for dep in set(deps):
            dependents[dep].append(node)

    ready = [(keys[node], node) for node, count in remaining.items() if count == 0]
    heapq.heapify(ready)
    order: list[str] = []
    while ready:
        _, node = heapq.heappop(ready)
        order.append(node)
        for dependent in dependents[node]:
            remaining[dependent] -= 1
            if remaining[dependent] == 0:
                heapq.heappush(ready, (keys[dependent], dependent))

    if len(order) != len(remaining):
        msg = "Graph contains a cycle"
        raise ValueError(msg)
    return order


class GraphBuilder:
    """Builds install plans from package requests."""

    def __init__(
        self,
        resolver: SourceResolver,
        pins: Mapping[str, BackendOrigin] | None = None,
    ) -> None:
        self._resolver = resolver
        self._pins = dict(pins or {})

    def build(
        self,
        requests: Iterable[str],
        pins: Mapping[str, BackendOrigin] | None = None,
        installed: Mapping[str, str] | None = None,
        provides: Mapping[str, Sequence[str | None]] | None = None,
        cancel: CancelToken | None = None,
    ) -> InstallPlan:
        """Expand requests into an ordered install plan.

        Args:
            requests: Package specs, optionally prefixed ``origin:`` to force
                a backend for that request.
            pins: Per-package backend pins for this build, merged over the
                builder's pins.
            installed: Installed name to version mapping; satisfied
                dependencies are not expanded.
            provides: Virtual names installed packages provide, mapped to
                their provided versions (None when unversioned).
            cancel: Optional cancellation token.

        Raises:
            NotFoundError: If a package cannot be resolved.
            BackendUnavailableError: If no backend could be reached.
            VersionConflictError: If two requirers need incompatible versions.
            CycleDetectedError: If the dependencies form a cycle.
        """
        request_list = sorted(set(requests))
        all_pins = {**self._pins, **(pins or {})}
        installed = installed or {}
        provides = provides or {}

        resolutions: dict[str, Resolution] = {}
        selected: dict[str, _Selection] = {}
        primary: dict[str, str] = {}
        constraints: dict[str, list[tuple[str, Dependency]]] = defaultdict(list)

        seq = itertools.count()
        queue: list[tuple[int, str, int, str, Dependency, BackendOrigin | None]] = []
        for request in request_list:
            dep, origin = parse_request(request)
            heapq.heappush(queue, (0, dep.name, next(seq), ROOT, dep, origin))

        while queue:
            depth, name, _, requirer, dep, explicit = heapq.heappop(queue)
            if cancel is not None:
                cancel.raise_if_cancelled("plan")
            requirer_name = ROOT if requirer == ROOT else selected[requirer].record.name

            key = f"{explicit.value}:{name}" if explicit is not None else primary.get(name)
            if key is not None and key in selected:
                node = selected[key]
                if not dep.satisfied_by(node.record.version):
                    raise VersionConflictError(
                        name, self._prior(constraints[name]), (requirer_name, str(dep))
                    )
                constraints[name].append((requirer_name, dep))
                self._link(selected, requirer, key)
                continue

            if requirer != ROOT and self._provided(dep, installed, provides):
                logger.debug("Skipping %s: already satisfied on the host", dep)
                continue

            constraints[name].append((requirer_name, dep))
            if name not in resolutions:
                resolutions[name] = self._resolver.resolve(name, cancel)
            record, reason, alternatives = self._select(
                resolutions[name], constraints[name], explicit or all_pins.get(name)
            )

            node = _Selection(record=record, reason=reason, alternatives=alternatives)
            selected[record.key] = node
            primary.setdefault(name, record.key)
            self._link(selected, requirer, record.key)
            logger.debug("Selected %s (%s)", record.key, reason)

            for child in record.depends:
                heapq.heappush(queue, (depth + 1, child.name, next(seq), record.key, child, None))

        edges = {key: node.depends_on for key, node in selected.items()}
        cycle = find_cycle(edges)
        if cycle is not None:
            raise CycleDetectedError([selected[key].record.name for key in cycle])

        order = topological_order(
            edges,
            {key: (node.record.name, node.record.origin.value) for key, node in selected.items()},
        )
        nodes = tuple(
            PlanNode(
                record=selected[key].record,
                reason=selected[key].reason,
                alternatives=selected[key].alternatives,
                requested=selected[key].requested,
                required_by=tuple(sorted(selected[key].required_by)),
                depends_on=tuple(sorted(selected[key].depends_on)),
            )
            for key in order
        )
        return InstallPlan(nodes=nodes, requests=tuple(request_list))

    def _select(
        self,
        resolution: Resolution,
        constraints: list[tuple[str, Dependency]],
        pin: BackendOrigin | None,
    ) -> tuple[PackageRecord, SelectionReason, tuple[BackendOrigin, ...]]:
        name = resolution.name
        candidates = list(resolution.records)
        if pin is not None:
            candidates = [r for r in candidates if r.origin == pin]
            if not candidates:
                raise NotFoundError(
                    name,
                    resolution.status_labels(),
                    reason=f"not provided by pinned backend {pin.value}",
                )

        satisfying = [
            r for r in candidates if all(c.satisfied_by(r.version) for _, c in constraints)
        ]
        if not satisfying:
            requirer, dep = constraints[-1]
            if len(constraints) > 1:
                raise VersionConflictError(
                    name, self._prior(constraints[:-1]), (requirer, str(dep))
                )
            available = ", ".join(sorted({r.version for r in candidates}))
            raise VersionConflictError(name, (requirer, str(dep)), ("<available>", available))

        def compare(a: PackageRecord, b: PackageRecord) -> int:
            by_rank = self._resolver.rank(a.origin) - self._resolver.rank(b.origin)
            return by_rank or -vercmp(a.version, b.version)

        best = sorted(satisfying, key=cmp_to_key(compare))[0]
        origins = resolution.origins
        if pin is not None:
            reason: SelectionReason = "pinned"
        elif len(origins) == 1:
            reason = "only-candidate"
        else:
            reason = "preference"
        alternatives = tuple(o for o in origins if o != best.origin)
        return best, reason, alternatives

    @staticmethod
    def _prior(constraints: list[tuple[str, Dependency]]) -> tuple[str, str]:
        """Pick the earlier constraint to name in a conflict."""
        for requirer, dep in constraints:
            if dep.op is not None:
                return requirer, str(dep)
        requirer, dep = constraints[0]
        return requirer, str(dep)

    @staticmethod
    def _link(selected: dict[str, _Selection], requirer: str, key: str) -> None:
        node = selected[key]
        if requirer == ROOT:
            node.requested = True
            return
        selected[requirer].depends_on.add(key)
        node.required_by.add(selected[requirer].record.name)

    @staticmethod
    def _provided(
        dep: Dependency,
        installed: Mapping[str, str],
        provides: Mapping[str, Sequence[str | None]],
    ) -> bool:
        """Check if the host already satisfies a dependency."""
        # Shared-library provides (libfoo.so=1-64) are left to pacman
        if ".so" in dep.name:
            return True
        version = installed.get(dep.name)
        if version is not None and dep.satisfied_by(version):
            return True
        # An unversioned provide only satisfies an unversioned dependency
        return any(
            dep.op is None or (provided is not None and dep.satisfied_by(provided))
            for provided in provides.get(dep.name, ())
        )
