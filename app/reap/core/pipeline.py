"""End-to-end install pipeline.

Control flow per request batch::

    plan -> fetch + audit (parallel) -> overrides -> sandbox (parallel)
         -> checkpoint -> commit (-> restore on failure)

Every failure before the checkpoint is reported per package and stops
the batch before any host mutation. ``test`` runs the same pipeline
without the commit stage.
"""

import logging
import subprocess
from collections.abc import Callable, Iterable, Mapping, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeVar

from reap.backends.base import Backend
from reap.core.audit import AuditPipeline
from reap.core.config import ReapConfig
from reap.core.errors import (
    AuditBlockedError,
    BackendUnavailableError,
    CycleDetectedError,
    NotFoundError,
    ReapError,
    SandboxRunFailedError,
    VersionConflictError,
)
from reap.core.executor import InstallExecutor
from reap.core.graph import GraphBuilder
from reap.core.hooks import HookContext, HookRegistry
from reap.core.resolver import SourceResolver
from reap.models.audit import AuditResult
from reap.models.plan import InstallPlan, PlanNode
from reap.models.record import BackendOrigin, FetchedArtifact
from reap.models.sandbox import SandboxRun
from reap.models.transaction import AuditOverride, StageFailure, Transaction, TransactionState
from reap.models.unit import VettedUnit
from reap.sandbox.orchestrator import SandboxOrchestrator
from reap.utils.cancel import CancelToken
from reap.utils.shell import run_command
from reap.utils.version import vercmp

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class PipelineReport:
    """Everything one pipeline run produced.

    Attributes:
        requests: The requested package specs.
        plan: The install plan, if planning succeeded.
        audits: Audit results keyed by plan node key.
        runs: Sandbox runs keyed by plan node key.
        overrides: Audit overrides recorded for the transaction.
        transaction: The transaction, if one was started.
        failures: Failures in the order they were recorded.
        statuses: Backend statuses from a failed resolution.
    """

    requests: tuple[str, ...]
    plan: InstallPlan | None = None
    audits: dict[str, AuditResult] = field(default_factory=dict)
    runs: dict[str, SandboxRun] = field(default_factory=dict)
    overrides: list[AuditOverride] = field(default_factory=list)
    transaction: Transaction | None = None
    failures: list[StageFailure] = field(default_factory=list)
    statuses: dict[str, str] = field(default_factory=dict)

    @property
    def committed(self) -> bool:
        """Check if the transaction committed."""
        return (
            self.transaction is not None
            and self.transaction.state == TransactionState.COMMITTED
        )

    @property
    def ok(self) -> bool:
        """Check if the run ended without failures."""
        if self.failures:
            return False
        return self.transaction is None or self.committed


@dataclass(frozen=True, slots=True)
class PackageUpdate:
    """Newest available version of an installed package.

    Attributes:
        origin: Backend offering the update.
        version: The newer version.
    """

    origin: BackendOrigin
    version: str


def query_foreign_packages() -> dict[str, str]:
    """Installed packages not found in any sync database (``pacman -Qm``).

    Raises:
        RuntimeError: If pacman cannot be queried.
    """
    try:
        result = run_command(["pacman", "-Qm"], timeout=30.0)
    except (FileNotFoundError, subprocess.TimeoutExpired) as e:
        msg = f"pacman -Qm failed: {e}"
        raise RuntimeError(msg) from e
    # pacman -Qm exits 1 when there are no foreign packages
    if not result.success and result.stdout.strip():
        msg = f"pacman -Qm failed: {result.stderr.strip()}"
        raise RuntimeError(msg)
    packages: dict[str, str] = {}
    for line in result.stdout.splitlines():
        parts = line.split()
        if len(parts) == 2:
            packages[parts[0]] = parts[1]
    return packages


class InstallPipeline:
    """Drives requests through every lifecycle stage."""

    def __init__(
        self,
        resolver: SourceResolver,
        graph: GraphBuilder,
        backends: Mapping[BackendOrigin, Backend],
        audit: AuditPipeline,
        sandbox: SandboxOrchestrator,
        executor: InstallExecutor,
        config: ReapConfig,
        hooks: HookRegistry | None = None,
        build_root: Path | None = None,
        installed: Callable[[], Mapping[str, str]] | None = None,
        provides: Callable[[], Mapping[str, Sequence[str | None]]] | None = None,
        foreign: Callable[[], Mapping[str, str]] = query_foreign_packages,
    ) -> None:
        self.resolver = resolver
        self.graph = graph
        self.backends = dict(backends)
        self.audit = audit
        self.sandbox = sandbox
        self.executor = executor
        self.config = config
        self.hooks = hooks or HookRegistry(config.hooks.blocking)
        self._build_root = build_root or Path.cwd() / "build"
        self._installed = installed
        self._provides = provides
        self._foreign = foreign

    def plan(
        self,
        requests: Iterable[str],
        pins: Mapping[str, BackendOrigin] | None = None,
        cancel: CancelToken | None = None,
    ) -> InstallPlan:
        """Resolve requests into an install plan.

        Raises:
            NotFoundError, BackendUnavailableError, VersionConflictError,
            CycleDetectedError: From resolution and expansion.
        """
        installed = self._installed() if self._installed is not None else None
        provides = self._provides() if self._provides is not None else None
        return self.graph.build(
            requests, pins=pins, installed=installed, provides=provides, cancel=cancel
        )

    def run(
        self,
        requests: Iterable[str],
        *,
        commit: bool = True,
        override: bool = False,
        accept_changes: bool = False,
        pins: Mapping[str, BackendOrigin] | None = None,
        cancel: CancelToken | None = None,
    ) -> PipelineReport:
        """Run the pipeline for a batch of requests.

        Args:
            requests: Package specs.
            commit: Apply to the host; False stops after the sandbox stage.
            override: Override blocked audit verdicts for this transaction.
            accept_changes: Accept new or changed recipes.
            pins: Per-package backend pins.
            cancel: Optional cancellation token.

        Returns:
            PipelineReport describing every stage that ran.

        Raises:
            RestoreFailedError: If a failed commit could not be rolled back.
        """
        report = PipelineReport(requests=tuple(requests))

        try:
            plan = self.plan(report.requests, pins, cancel)
        except (NotFoundError, BackendUnavailableError) as e:
            report.statuses = dict(e.statuses)
            report.failures.append(StageFailure.from_exception(e.name, e))
            return report
        except VersionConflictError as e:
            report.failures.append(StageFailure.from_exception(e.name, e))
            return report
        except CycleDetectedError as e:
            report.failures.append(StageFailure.from_exception(e.cycle[0], e))
            return report
        except ValueError as e:
            report.failures.append(StageFailure.from_exception("*", e, stage="plan"))
            return report
        except ReapError as e:
            report.failures.append(StageFailure.from_exception("*", e))
            return report
        report.plan = plan
        logger.info("Plan: %s", " ".join(plan.names))

        artifacts: dict[str, FetchedArtifact] = {}
        for node, outcome in self._parallel(
            plan, lambda node: self._vet(node, accept_changes, cancel), "fetch"
        ):
            if isinstance(outcome, StageFailure):
                report.failures.append(outcome)
            else:
                artifacts[node.key], report.audits[node.key] = outcome
        if report.failures:
            return report

        self._apply_overrides(report, override)
        if report.failures:
            return report

        units: dict[str, VettedUnit] = {}
        for node, result in self._parallel(
            plan, lambda node: self._build(node, artifacts[node.key], cancel), "sandbox"
        ):
            if isinstance(result, StageFailure):
                report.failures.append(result)
                continue
            report.runs[node.key] = result
            if result.failed:
                error = SandboxRunFailedError(node.name, result.status.value, result.failed_step)
                report.failures.append(StageFailure.from_exception(node.name, error))
            else:
                units[node.key] = VettedUnit(
                    node=node,
                    artifact=artifacts[node.key],
                    audit=report.audits[node.key],
                    run=result,
                )
        if report.failures or not commit:
            return report

        try:
            txn = self.executor.begin(plan, units, report.overrides)
        except OSError as e:
            logger.error("Cannot checkpoint the host: %s", e)
            report.failures.append(StageFailure.from_exception("*", e, stage="checkpoint"))
            return report
        report.transaction = txn
        txn = self.executor.commit(txn, units, cancel)
        report.failures.extend(txn.failures)
        if txn.state == TransactionState.COMMITTED:
            for unit in units.values():
                self.audit.accept(unit.artifact)
        return report

    def test(
        self,
        requests: Iterable[str],
        *,
        override: bool = False,
        accept_changes: bool = False,
        pins: Mapping[str, BackendOrigin] | None = None,
        cancel: CancelToken | None = None,
    ) -> PipelineReport:
        """Run everything up to and including the sandbox, never committing."""
        return self.run(
            requests,
            commit=False,
            override=override,
            accept_changes=accept_changes,
            pins=pins,
            cancel=cancel,
        )

    def outdated(self, names: Iterable[str] | None = None) -> list[tuple[str, str, PackageUpdate]]:
        """Foreign packages with a newer version available.

        Returns:
            ``(name, installed_version, newest_request)`` tuples sorted by name.
        """
        wanted = set(names) if names is not None else None
        updates: list[tuple[str, str, PackageUpdate]] = []
        for name, local in sorted(self._foreign().items()):
            if self.config.is_ignored(name) or (wanted is not None and name not in wanted):
                continue
            try:
                resolution = self.resolver.resolve(name)
            except (NotFoundError, BackendUnavailableError) as e:
                logger.warning("Cannot check %s for updates: %s", name, e)
                continue
            newest = resolution.records[0]
            for record in resolution.records[1:]:
                if vercmp(record.version, newest.version) > 0:
                    newest = record
            if vercmp(newest.version, local) > 0:
                updates.append((name, local, PackageUpdate(newest.origin, newest.version)))
        return updates

    def upgrade(
        self,
        names: Iterable[str] | None = None,
        cancel: CancelToken | None = None,
        updates: Iterable[tuple[str, str, PackageUpdate]] | None = None,
    ) -> list[PipelineReport]:
        """Upgrade outdated foreign packages, one transaction per package.

        Pipelines run concurrently; the writer lock serializes their commits.

        Args:
            names: Limit the upgrade to these packages.
            cancel: Optional cancellation token.
            updates: Previously computed ``outdated()`` result to act on.
        """
        if updates is None:
            updates = self.outdated(names)
        targets = [f"{update.origin.value}:{name}" for name, _, update in updates]
        if not targets:
            return []
        logger.info("Upgrading %d package(s)", len(targets))
        with ThreadPoolExecutor(
            max_workers=self.config.parallel, thread_name_prefix="reap-upgrade"
        ) as pool:
            futures = [pool.submit(self.run, [target], cancel=cancel) for target in targets]
            return [future.result() for future in futures]

    def _vet(
        self, node: PlanNode, accept_changes: bool, cancel: CancelToken | None
    ) -> tuple[FetchedArtifact, AuditResult]:
        if cancel is not None:
            cancel.raise_if_cancelled("fetch")
        record = node.record
        backend = self.backends[record.origin]
        dest = self._build_root / f"{record.origin.value}-{record.name}-{record.version}".replace(
            ":", "_"
        )
        artifact = backend.fetch(record, dest)
        return artifact, self.audit.audit(artifact, accept_changes)

    def _build(
        self, node: PlanNode, artifact: FetchedArtifact, cancel: CancelToken | None
    ) -> SandboxRun:
        steps = self.backends[node.record.origin].sandbox_steps(artifact)
        run = self.sandbox.run(artifact, steps, cancel)
        if run.succeeded:
            self.hooks.fire(
                HookContext(
                    point="post_build",
                    package=node.name,
                    version=node.record.version,
                    origin=node.record.origin.value,
                    tap=node.record.tap,
                )
            )
        return run

    def _apply_overrides(self, report: PipelineReport, override: bool) -> None:
        blocked = [report.audits[key] for key in sorted(report.audits)]
        blocked = [result for result in blocked if result.blocked]
        if not blocked:
            return
        if override and self.config.audit.allow_override:
            for result in blocked:
                logger.warning(
                    "Overriding blocked audit for %s: %s",
                    result.record.name,
                    "; ".join(result.blocked_reasons),
                )
                report.overrides.append(
                    AuditOverride(package=result.record.name, reasons=tuple(result.blocked_reasons))
                )
            return
        if override:
            logger.error("Audit overrides are disabled by configuration")
        for result in blocked:
            error = AuditBlockedError(result.record.name, result.blocked_reasons)
            report.failures.append(StageFailure.from_exception(result.record.name, error))

    def _parallel(
        self,
        plan: InstallPlan,
        work: Callable[[PlanNode], T],
        stage: str,
    ) -> list[tuple[PlanNode, T | StageFailure]]:
        """Run ``work`` for every node on the worker pool, in plan order."""
        results: dict[str, T | StageFailure] = {}
        with ThreadPoolExecutor(
            max_workers=self.config.parallel, thread_name_prefix=f"reap-{stage}"
        ) as pool:
            futures: dict[Future[T], PlanNode] = {pool.submit(work, node): node for node in plan}
            for future in as_completed(futures):
                node = futures[future]
                try:
                    results[node.key] = future.result()
                except ReapError as e:
                    results[node.key] = StageFailure.from_exception(node.name, e)
                except (RuntimeError, OSError, ValueError) as e:
                    logger.error("%s of %s failed: %s", stage, node.key, e)
                    results[node.key] = StageFailure.from_exception(node.name, e, stage=stage)
        return [(node, results[node.key]) for node in plan]
