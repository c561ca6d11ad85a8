"""Pytest configuration and shared fixtures.

This module contains fixtures used across all test modules: isolated
XDG directories, record factories and in-memory fakes for backends,
sandbox drivers and host operators, plus a harness that wires the real
pipeline together under a temporary managed root.
"""

import shutil
import threading
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest

from reap.backends.base import Backend
from reap.core.audit import AuditCache, AuditPipeline, RecipeStore, SignatureVerifier
from reap.core.config import ReapConfig
from reap.core.executor import InstallExecutor, WriterLock
from reap.core.graph import GraphBuilder
from reap.core.hooks import HookRegistry
from reap.core.pipeline import InstallPipeline
from reap.core.resolver import SourceResolver
from reap.core.snapshot import DEFAULT_DB_PATH, LocalPackageDb, SnapshotManager
from reap.core.state import StateManager
from reap.models.action import Action, ActionResult, ActionType
from reap.models.audit import SignatureStatus
from reap.models.record import BackendOrigin, Dependency, FetchedArtifact, PackageRecord
from reap.models.sandbox import FileChange, NetworkEvent, SandboxKind, SandboxStep
from reap.operators.base import Operator
from reap.sandbox.driver import SandboxEnv, prepare_scratch
from reap.sandbox.orchestrator import SandboxOrchestrator
from reap.sandbox.trace import diff_overlay
from reap.utils.cancel import CancelToken
from reap.utils.shell import CommandResult

CLEAN_RECIPE = """\
pkgname={name}
pkgver={pkgver}
pkgrel={pkgrel}
pkgdesc="Test package {name}"
arch=('x86_64')

build() {{
  make
}}

package() {{
  install -Dm755 {name} "$pkgdir/usr/bin/{name}"
}}
"""

GOOD_SIGNATURE = b"good"


@pytest.fixture
def isolated_dirs(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point every XDG directory at a temporary location."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_STATE_HOME", str(tmp_path / "state"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    return tmp_path


def record(
    name: str,
    version: str = "1.0-1",
    origin: BackendOrigin = BackendOrigin.TAP,
    depends: Iterable[str] = (),
    source: str | None = None,
    **kwargs: Any,
) -> PackageRecord:
    """Build a PackageRecord with sensible defaults."""
    return PackageRecord(
        name=name,
        version=version,
        origin=origin,
        source=source or f"{origin.value}/{name}",
        depends=tuple(Dependency.parse(d) for d in depends),
        **kwargs,
    )


@pytest.fixture
def make_record() -> Callable[..., PackageRecord]:
    """Factory for package records."""
    return record


class FakeBackend(Backend):
    """In-memory backend serving a fixed set of records."""

    def __init__(
        self,
        origin: BackendOrigin = BackendOrigin.TAP,
        records: Iterable[PackageRecord] = (),
        *,
        available: bool = True,
        error: Exception | None = None,
        delay: float = 0.0,
        unsigned: Iterable[str] = (),
        recipes: Mapping[str, str] | None = None,
    ) -> None:
        self._origin = origin
        self.records = list(records)
        self.available = available
        self.error = error
        self.delay = delay
        self.unsigned = set(unsigned)
        self.recipes = dict(recipes or {})
        self.fetched: list[str] = []

    @property
    def origin(self) -> BackendOrigin:
        return self._origin

    def is_available(self) -> bool:
        return self.available

    def search(self, name: str) -> list[PackageRecord]:
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return [r for r in self.records if r.name == name]

    def query(self, term: str) -> list[PackageRecord]:
        if self.error is not None:
            raise self.error
        return [r for r in self.records if term in r.name]

    def fetch(self, record: PackageRecord, dest: Path) -> FetchedArtifact:
        self._prepare_dest(dest)
        pkgver, _, pkgrel = record.version.rpartition("-")
        recipe = dest / "PKGBUILD"
        recipe.write_text(
            self.recipes.get(record.name)
            or CLEAN_RECIPE.format(name=record.name, pkgver=pkgver, pkgrel=pkgrel),
            encoding="utf-8",
        )
        signature: Path | None = None
        if record.name not in self.unsigned:
            signature = dest / "PKGBUILD.sig"
            signature.write_bytes(GOOD_SIGNATURE)
        self.fetched.append(record.name)
        return FetchedArtifact(
            record=record, workdir=dest, recipe_path=recipe, signature_path=signature
        )

    def sandbox_steps(self, artifact: FetchedArtifact) -> list[SandboxStep]:
        return [
            SandboxStep(name="build", argv=("make",)),
            SandboxStep(name="install", argv=("install", f"/usr/bin/{artifact.record.name}")),
        ]


@pytest.fixture
def make_backend() -> type[FakeBackend]:
    """Factory for in-memory backends."""
    return FakeBackend


class FakeVerifier(SignatureVerifier):
    """Verifier that trusts signatures whose content is GOOD_SIGNATURE."""

    def verify(self, signature: Path, signed: Path) -> tuple[SignatureStatus, str | None]:
        if signature.read_bytes() == GOOD_SIGNATURE:
            return SignatureStatus.VALID, "F00DF00D"
        return SignatureStatus.INVALID, None


class FakeDriver:
    """Sandbox driver that simulates steps against a real overlay upper dir.

    The ``install`` step writes the path given as its second argv item
    into the upper directory, so the filesystem diff is computed by the
    real diff_overlay.
    """

    kind = SandboxKind.BUBBLEWRAP

    def __init__(
        self,
        available: bool = True,
        results: Mapping[str, CommandResult] | None = None,
        kind: SandboxKind | None = None,
        network: Sequence[NetworkEvent] = (),
        on_exec: Callable[[str], None] | None = None,
    ) -> None:
        self.available = available
        self.results = dict(results or {})
        if kind is not None:
            self.kind = kind
        self.network = list(network)
        self.on_exec = on_exec
        self.executed: list[tuple[str, tuple[str, ...]]] = []
        self.provisioned = 0
        self.teardowns = 0
        self._lock = threading.Lock()

    def is_available(self) -> bool:
        return self.available

    def provision(
        self, base: Path, scratch: Path, build_dir: Path, allow_network: bool
    ) -> SandboxEnv:
        upper, work = prepare_scratch(scratch, build_dir)
        with self._lock:
            self.provisioned += 1
        return SandboxEnv(
            kind=self.kind,
            base=base,
            scratch=scratch,
            upper=upper,
            work=work,
            build_dir=build_dir,
            allow_network=allow_network,
        )

    def exec(
        self,
        env: SandboxEnv,
        step: str,
        argv: Sequence[str],
        *,
        timeout: float | None,
        cancel: CancelToken | None,
        log_path: Path | None,
    ) -> CommandResult:
        with self._lock:
            self.executed.append((step, tuple(argv)))
        if self.on_exec is not None:
            self.on_exec(step)
        result = self.results.get(step, CommandResult(stdout="ok\n", stderr="", returncode=0))
        if log_path is not None:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            with log_path.open("a", encoding="utf-8") as f:
                f.write(f"$ {' '.join(argv)}\n{result.stdout}")
        if result.success and step == "install" and len(argv) > 1:
            target = env.upper / argv[1].lstrip("/")
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(f"built in {env.build_dir.name}\n", encoding="utf-8")
        return result

    def trace(self, env: SandboxEnv) -> tuple[list[FileChange], list[NetworkEvent]]:
        return diff_overlay(env.upper, env.base), list(self.network)

    def teardown(self, env: SandboxEnv) -> None:
        with self._lock:
            self.teardowns += 1
        shutil.rmtree(env.scratch, ignore_errors=True)


@pytest.fixture
def make_driver() -> type[FakeDriver]:
    """Factory for fake sandbox drivers."""
    return FakeDriver


class FakeOperator(Operator):
    """Host operator that writes into a temporary managed root.

    Installing writes ``usr/bin/<name>`` and a package-database entry.
    Names in ``fail`` get a partial write and then an OSError; names in
    ``reject`` return a failed ActionResult; names in ``interrupt`` get a
    partial write and then a KeyboardInterrupt.
    """

    def __init__(
        self,
        root: Path,
        fail: Iterable[str] = (),
        reject: Iterable[str] = (),
        delay: float = 0.0,
        interrupt: Iterable[str] = (),
    ) -> None:
        self.root = root
        self.fail = set(fail)
        self.reject = set(reject)
        self.interrupt = set(interrupt)
        self.delay = delay
        self.installed: list[str] = []

    @property
    def origins(self) -> frozenset[BackendOrigin]:
        return frozenset(BackendOrigin)

    def is_available(self) -> bool:
        return True

    def install(self, artifact: FetchedArtifact) -> ActionResult:
        rec = artifact.record
        action = Action(action_type=ActionType.INSTALL, package=rec.name, origin=rec.origin)
        if rec.name in self.reject:
            return ActionResult(action=action, success=False, error="conflicting files")

        binary = self.root / "usr" / "bin" / rec.name
        binary.parent.mkdir(parents=True, exist_ok=True)
        if rec.name in self.fail:
            binary.write_text("partial", encoding="utf-8")
            msg = f"No space left on device while installing {rec.name}"
            raise OSError(msg)
        if rec.name in self.interrupt:
            binary.write_text("partial", encoding="utf-8")
            raise KeyboardInterrupt
        if self.delay:
            time.sleep(self.delay)
        binary.write_text(f"{rec.name} {rec.version}\n", encoding="utf-8")

        db = LocalPackageDb(self.root / DEFAULT_DB_PATH)
        for entry in db.entries_for(rec.name):
            shutil.rmtree(db.path / entry)
        entry_dir = db.path / f"{rec.name}-{rec.version}"
        entry_dir.mkdir(parents=True)
        (entry_dir / "desc").write_text(f"%NAME%\n{rec.name}\n", encoding="utf-8")
        self.installed.append(rec.name)
        return ActionResult(action=action, success=True)


@pytest.fixture
def make_operator() -> type[FakeOperator]:
    """Factory for fake host operators."""
    return FakeOperator


@dataclass
class Harness:
    """A fully wired pipeline over fakes, rooted in a temporary directory."""

    root: Path
    config: ReapConfig
    state: StateManager
    snapshots: SnapshotManager
    hooks: HookRegistry
    driver: FakeDriver
    operator: FakeOperator
    audit: AuditPipeline
    executor: InstallExecutor
    pipeline: InstallPipeline

    def read(self, path: str) -> str | None:
        """Content of a file under the managed root, or None."""
        target = self.root / path.lstrip("/")
        return target.read_text(encoding="utf-8") if target.exists() else None

    def installed(self) -> dict[str, str]:
        """Installed packages according to the managed root's database."""
        return self.snapshots.db.installed()


@pytest.fixture
def make_harness(tmp_path: Path) -> Callable[..., Harness]:
    """Factory wiring real pipeline components around fakes."""

    def factory(
        backends: Sequence[Backend],
        *,
        config: ReapConfig | None = None,
        driver: FakeDriver | None = None,
        fail: Iterable[str] = (),
        reject: Iterable[str] = (),
        delay: float = 0.0,
        foreign: Mapping[str, str] | None = None,
    ) -> Harness:
        config = config or ReapConfig()
        config.sandbox.base_image = str(tmp_path / "base")
        root = tmp_path / "root"
        root.mkdir(exist_ok=True)

        state = StateManager(tmp_path / "state")
        snapshots = SnapshotManager(tmp_path / "snapshots", root=root)
        hooks = HookRegistry(config.hooks.blocking)
        driver = driver or FakeDriver()
        operator = FakeOperator(root, fail=fail, reject=reject, delay=delay)

        resolver = SourceResolver(
            backends, order=[b.origin for b in backends], timeout=5.0, max_workers=4
        )
        audit = AuditPipeline(
            config.trust,
            RecipeStore(tmp_path / "audit" / "recipes"),
            AuditCache(tmp_path / "audit" / "cache"),
            verifier=FakeVerifier(),
        )
        sandbox = SandboxOrchestrator([driver], config.sandbox, state, tmp_path / "scratch")
        executor = InstallExecutor(
            [operator],
            snapshots,
            state,
            hooks,
            WriterLock(tmp_path / "state" / "writer.lock", poll_interval=0.01),
        )
        pipeline = InstallPipeline(
            resolver,
            GraphBuilder(resolver),
            {b.origin: b for b in backends},
            audit,
            sandbox,
            executor,
            config,
            hooks=hooks,
            build_root=tmp_path / "build",
            installed=snapshots.db.installed,
            provides=snapshots.db.provides,
            foreign=lambda: dict(foreign or {}),
        )
        return Harness(
            root=root,
            config=config,
            state=state,
            snapshots=snapshots,
            hooks=hooks,
            driver=driver,
            operator=operator,
            audit=audit,
            executor=executor,
            pipeline=pipeline,
        )

    return factory
