"""Source resolver.

Queries every enabled backend concurrently for a package name and
returns the union of their records together with a per-backend status.
A slow or failing backend is reported, never fatal, unless every
backend failed.
"""

import logging
import subprocess
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from enum import Enum

from reap.backends.base import Backend
from reap.core.errors import BackendUnavailableError, NotFoundError
from reap.models.record import BackendOrigin, PackageRecord
from reap.utils.cancel import CancelToken

logger = logging.getLogger(__name__)


class BackendStatus(str, Enum):
    """Outcome of querying one backend."""

    OK = "ok"
    EMPTY = "empty"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class Resolution:
    """Records found for a name across all backends.

    Attributes:
        name: The queried name.
        records: Records in backend preference order.
        statuses: Status of every configured backend.
    """

    name: str
    records: tuple[PackageRecord, ...]
    statuses: dict[BackendOrigin, BackendStatus] = field(default_factory=dict)

    @property
    def origins(self) -> list[BackendOrigin]:
        """Distinct origins providing the name, in preference order."""
        seen: list[BackendOrigin] = []
        for record in self.records:
            if record.origin not in seen:
                seen.append(record.origin)
        return seen

    def status_labels(self) -> dict[str, str]:
        """Statuses keyed by origin value, for error reporting."""
        return {origin.value: status.value for origin, status in self.statuses.items()}


class SourceResolver:
    """Concurrent lookup across package backends.

    Attributes:
        order: Backend preference order used to order results.
    """

    def __init__(
        self,
        backends: Iterable[Backend],
        order: Sequence[BackendOrigin] | None = None,
        ignored: Iterable[str] = (),
        timeout: float = 10.0,
        max_workers: int = 4,
    ) -> None:
        self._backends: dict[BackendOrigin, Backend] = {b.origin: b for b in backends}
        self.order = list(order) if order is not None else list(self._backends)
        self._ignored = frozenset(ignored)
        self._timeout = timeout
        self._max_workers = max_workers

    @property
    def backends(self) -> Mapping[BackendOrigin, Backend]:
        """Backends keyed by origin."""
        return self._backends

    def rank(self, origin: BackendOrigin) -> int:
        """Position of an origin in the preference order."""
        try:
            return self.order.index(origin)
        except ValueError:
            return len(self.order)

    def resolve(self, name: str, cancel: CancelToken | None = None) -> Resolution:
        """Find every record named ``name``.

        Raises:
            NotFoundError: If no reachable backend reports the name, or
                the name is ignored.
            BackendUnavailableError: If every backend failed or timed out.
            CancelledError: If cancelled while waiting on backends.
        """
        if name in self._ignored:
            raise NotFoundError(name, reason="ignored by configuration")

        resolution = self._query_all(name, lambda backend: backend.search(name), cancel)
        # One record per (origin, version); pacman lists a package once per repo
        seen: set[tuple[BackendOrigin, str]] = set()
        unique: list[PackageRecord] = []
        for record in resolution.records:
            if record.name != name or (record.origin, record.version) in seen:
                continue
            seen.add((record.origin, record.version))
            unique.append(record)
        records = tuple(unique)
        resolution = Resolution(name=name, records=records, statuses=resolution.statuses)

        if records:
            logger.debug("Resolved %s from %s", name, [o.value for o in resolution.origins])
            return resolution

        attempted = {
            origin: status
            for origin, status in resolution.statuses.items()
            if status != BackendStatus.SKIPPED
        }
        if attempted and all(
            status in (BackendStatus.UNAVAILABLE, BackendStatus.TIMEOUT)
            for status in attempted.values()
        ):
            raise BackendUnavailableError(name, resolution.status_labels())
        raise NotFoundError(name, resolution.status_labels())

    def search(self, term: str, cancel: CancelToken | None = None) -> Resolution:
        """Free-text search across backends.

        Records with the same name and origin are reported once.
        """
        resolution = self._query_all(term, lambda backend: backend.query(term), cancel)
        seen: set[tuple[str, BackendOrigin]] = set()
        unique: list[PackageRecord] = []
        for record in resolution.records:
            if (record.name, record.origin) in seen or record.name in self._ignored:
                continue
            seen.add((record.name, record.origin))
            unique.append(record)
        return Resolution(name=term, records=tuple(unique), statuses=resolution.statuses)

    def _query_all(
        self,
        name: str,
        call: Callable[[Backend], list[PackageRecord]],
        cancel: CancelToken | None,
    ) -> Resolution:
        statuses: dict[BackendOrigin, BackendStatus] = {}
        futures: dict[BackendOrigin, Future[list[PackageRecord]]] = {}

        pool = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="reap-resolve")
        try:
            for origin in self.order:
                backend = self._backends.get(origin)
                if backend is None or not backend.is_available():
                    statuses[origin] = BackendStatus.SKIPPED
                    continue
                futures[origin] = pool.submit(call, backend)

            deadline = time.monotonic() + self._timeout
            results: dict[BackendOrigin, list[PackageRecord]] = {}
            for origin, future in futures.items():
                status, records = self._collect(origin, future, deadline, cancel)
                statuses[origin] = status
                results[origin] = records
        finally:
            # Slow backends are abandoned, not awaited
            pool.shutdown(wait=False, cancel_futures=True)

        ordered: list[PackageRecord] = []
        for origin in self.order:
            ordered.extend(results.get(origin, []))
        return Resolution(name=name, records=tuple(ordered), statuses=statuses)

    def _collect(
        self,
        origin: BackendOrigin,
        future: Future[list[PackageRecord]],
        deadline: float,
        cancel: CancelToken | None,
    ) -> tuple[BackendStatus, list[PackageRecord]]:
        while True:
            if cancel is not None:
                cancel.raise_if_cancelled("resolve")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning("Backend %s timed out", origin.value)
                return BackendStatus.TIMEOUT, []
            try:
                records = future.result(timeout=min(remaining, 0.25))
            except FutureTimeoutError:
                continue
            except (RuntimeError, OSError, subprocess.SubprocessError, ValueError) as e:
                logger.warning("Backend %s unavailable: %s", origin.value, e)
                return BackendStatus.UNAVAILABLE, []
            return (BackendStatus.OK if records else BackendStatus.EMPTY), list(records)
