"""Sandbox driver protocol and shared environment helpers.

A driver provisions an ephemeral root whose writes land in an overlay
upper directory above a clean, read-only base. Drivers are plain
classes that satisfy the SandboxDriver protocol; the orchestrator only
talks to that protocol.
"""

import logging
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from reap.models.sandbox import FileChange, NetworkEvent, SandboxKind
from reap.utils.cancel import CancelToken
from reap.utils.shell import CommandResult, run_command

logger = logging.getLogger(__name__)

# Build-directory subfolder that receives strace output
TRACE_DIRNAME = ".trace"


@dataclass(slots=True)
class SandboxEnv:
    """A provisioned sandbox.

    Attributes:
        kind: Driver that provisioned it.
        base: Read-only lower root the overlay starts from.
        scratch: Directory owning all per-run state; removed on teardown.
        upper: Overlay upper directory (every write lands here).
        work: Overlay work directory.
        build_dir: Host directory mounted at /build.
        allow_network: Whether steps may use the network.
        merged: Mounted overlay root for drivers that mount it themselves.
        handle: Driver-specific handle (container name).
        trace: Whether steps are wrapped with strace.
    """

    kind: SandboxKind
    base: Path
    scratch: Path
    upper: Path
    work: Path
    build_dir: Path
    allow_network: bool = True
    merged: Path | None = None
    handle: str | None = None
    trace: bool = False

    @property
    def trace_dir(self) -> Path:
        """Host directory collecting strace logs."""
        return self.build_dir / TRACE_DIRNAME


@runtime_checkable
class SandboxDriver(Protocol):
    """Interface every sandbox backend implements."""

    kind: SandboxKind

    def is_available(self) -> bool:
        """Check if the backend can run on this host."""
        ...

    def provision(
        self, base: Path, scratch: Path, build_dir: Path, allow_network: bool
    ) -> SandboxEnv:
        """Create an ephemeral environment over ``base``.

        Raises:
            RuntimeError: If the environment cannot be created. Partial
                state is cleaned up before raising.
        """
        ...

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
        """Run one command inside the environment."""
        ...

    def trace(self, env: SandboxEnv) -> tuple[list[FileChange], list[NetworkEvent]]:
        """Collect the filesystem diff and network log."""
        ...

    def teardown(self, env: SandboxEnv) -> None:
        """Destroy the environment and everything it wrote."""
        ...


def prepare_scratch(scratch: Path, build_dir: Path) -> tuple[Path, Path]:
    """Create upper/work directories under ``scratch`` and the trace directory.

    Returns:
        Tuple of (upper, work).
    """
    upper = scratch / "upper"
    work = scratch / "work"
    upper.mkdir(parents=True, exist_ok=True)
    work.mkdir(parents=True, exist_ok=True)
    (build_dir / TRACE_DIRNAME).mkdir(parents=True, exist_ok=True)
    return upper, work


def has_strace(root: Path) -> bool:
    """Check if a root filesystem ships strace."""
    return (root / "usr" / "bin" / "strace").exists()


def _mount(args: list[str]) -> None:
    try:
        result = run_command(args, timeout=30.0)
    except (FileNotFoundError, subprocess.TimeoutExpired) as e:
        msg = f"{' '.join(args)} failed: {e}"
        raise RuntimeError(msg) from e
    if not result.success:
        msg = f"{' '.join(args)} failed: {result.stderr.strip()}"
        raise RuntimeError(msg)


def mount_overlay(env: SandboxEnv) -> Path:
    """Mount the overlay root under ``scratch/merged``.

    Raises:
        RuntimeError: If mounting fails.
    """
    merged = env.scratch / "merged"
    merged.mkdir(parents=True, exist_ok=True)
    options = f"lowerdir={env.base},upperdir={env.upper},workdir={env.work}"
    _mount(["mount", "-t", "overlay", "overlay", "-o", options, str(merged)])
    env.merged = merged
    return merged


def unmount_overlay(env: SandboxEnv) -> None:
    """Unmount an overlay mounted by mount_overlay (lazy, recursive)."""
    if env.merged is None:
        return
    try:
        _mount(["umount", "--recursive", "--lazy", str(env.merged)])
    except RuntimeError as e:
        logger.warning("Failed to unmount %s: %s", env.merged, e)
    env.merged = None
