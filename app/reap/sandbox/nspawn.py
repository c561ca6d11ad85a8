"""systemd-nspawn sandbox driver.

Requires root: the overlay root is mounted on the host and booted as a
container with the artifact directory bound at /build.
"""

import logging
import os
import shutil
from collections.abc import Sequence
from pathlib import Path

from reap.models.sandbox import BUILD_MOUNT, FileChange, NetworkEvent, SandboxKind
from reap.sandbox.driver import (
    SandboxEnv,
    has_strace,
    mount_overlay,
    prepare_scratch,
    unmount_overlay,
)
from reap.sandbox.trace import collect_network, diff_overlay, wrap_with_strace
from reap.utils.cancel import CancelToken
from reap.utils.shell import CommandResult, command_exists, run_cancellable

logger = logging.getLogger(__name__)


class NspawnDriver:
    """Sandbox driver using systemd-nspawn over a host-mounted overlay."""

    kind = SandboxKind.NSPAWN

    def is_available(self) -> bool:
        """Check if systemd-nspawn is installed and we are root."""
        return command_exists("systemd-nspawn") and os.geteuid() == 0

    def provision(
        self, base: Path, scratch: Path, build_dir: Path, allow_network: bool
    ) -> SandboxEnv:
        """Mount the overlay root.

        Raises:
            RuntimeError: If the base image is missing or mounting fails.
        """
        if not base.is_dir():
            msg = f"Sandbox base image not found: {base}"
            raise RuntimeError(msg)
        upper, work = prepare_scratch(scratch, build_dir)
        env = SandboxEnv(
            kind=self.kind,
            base=base,
            scratch=scratch,
            upper=upper,
            work=work,
            build_dir=build_dir,
            allow_network=allow_network,
            trace=has_strace(base),
        )
        try:
            mount_overlay(env)
        except RuntimeError:
            shutil.rmtree(scratch, ignore_errors=True)
            raise
        return env

    def command(self, env: SandboxEnv, step: str, argv: Sequence[str]) -> list[str]:
        """Build the systemd-nspawn command line for one step."""
        inner = wrap_with_strace(argv, step) if env.trace else list(argv)
        cmd = [
            "systemd-nspawn",
            "--quiet",
            "--register=no",
            f"--directory={env.merged}",
            f"--bind={env.build_dir}:{BUILD_MOUNT}",
            f"--chdir={BUILD_MOUNT}",
        ]
        if not env.allow_network:
            cmd.append("--private-network")
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
        """Run one step in a container."""
        return run_cancellable(
            self.command(env, step, argv), timeout=timeout, cancel=cancel, log_path=log_path
        )

    def trace(self, env: SandboxEnv) -> tuple[list[FileChange], list[NetworkEvent]]:
        """Diff the upper directory and read strace logs."""
        return diff_overlay(env.upper, env.base), collect_network(env.trace_dir)

    def teardown(self, env: SandboxEnv) -> None:
        """Unmount the overlay and remove all per-run state."""
        unmount_overlay(env)
        shutil.rmtree(env.scratch, ignore_errors=True)
