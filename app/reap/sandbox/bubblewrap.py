"""Bubblewrap sandbox driver.

Runs unprivileged: bwrap builds an overlay root from the base image and
a per-run upper directory, binds the artifact directory at /build and
unshares every namespace (network optionally shared).
"""

import logging
import shutil
from collections.abc import Sequence
from pathlib import Path

from reap.models.sandbox import BUILD_MOUNT, FileChange, NetworkEvent, SandboxKind
from reap.sandbox.driver import SandboxEnv, has_strace, prepare_scratch
from reap.sandbox.trace import collect_network, diff_overlay, wrap_with_strace
from reap.utils.cancel import CancelToken
from reap.utils.shell import CommandResult, command_exists, run_cancellable

logger = logging.getLogger(__name__)


class BubblewrapDriver:
    """Sandbox driver using bwrap overlay mounts."""

    kind = SandboxKind.BUBBLEWRAP

    def is_available(self) -> bool:
        """Check if bwrap is installed."""
        return command_exists("bwrap")

    def provision(
        self, base: Path, scratch: Path, build_dir: Path, allow_network: bool
    ) -> SandboxEnv:
        """Create overlay directories; bwrap mounts them per step.

        Raises:
            RuntimeError: If the base image is missing.
        """
        if not base.is_dir():
            msg = f"Sandbox base image not found: {base}"
            raise RuntimeError(msg)
        upper, work = prepare_scratch(scratch, build_dir)
        return SandboxEnv(
            kind=self.kind,
            base=base,
            scratch=scratch,
            upper=upper,
            work=work,
            build_dir=build_dir,
            allow_network=allow_network,
            trace=has_strace(base),
        )

    def command(self, env: SandboxEnv, step: str, argv: Sequence[str]) -> list[str]:
        """Build the full bwrap command line for one step."""
        inner = wrap_with_strace(argv, step) if env.trace else list(argv)
        cmd = [
            "bwrap",
            "--overlay-src", str(env.base),
            "--overlay", str(env.upper), str(env.work), "/",
            "--bind", str(env.build_dir), BUILD_MOUNT,
            "--dev", "/dev",
            "--proc", "/proc",
            "--tmpfs", "/tmp",
            "--unshare-all",
            "--die-with-parent",
            "--chdir", BUILD_MOUNT,
        ]
        if env.allow_network:
            cmd.append("--share-net")
        return [*cmd, "--", *inner]

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
        """Run one step inside bwrap."""
        return run_cancellable(
            self.command(env, step, argv), timeout=timeout, cancel=cancel, log_path=log_path
        )

    def trace(self, env: SandboxEnv) -> tuple[list[FileChange], list[NetworkEvent]]:
        """Diff the upper directory and read strace logs."""
        return diff_overlay(env.upper, env.base), collect_network(env.trace_dir)

    def teardown(self, env: SandboxEnv) -> None:
        """Remove all per-run state."""
        shutil.rmtree(env.scratch, ignore_errors=True)
        logger.debug("Removed bubblewrap scratch %s", env.scratch)
