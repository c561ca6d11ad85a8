"""Firejail sandbox driver.

Firejail chroots into a host-mounted overlay root. The artifact
directory is bind-mounted at /build inside that root before the first
step runs.
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
from reap.utils.shell import CommandResult, command_exists, run_cancellable, run_command

logger = logging.getLogger(__name__)


class FirejailDriver:
    """Sandbox driver using firejail --chroot over an overlay."""

    kind = SandboxKind.FIREJAIL

    def is_available(self) -> bool:
        """Check if firejail is installed and we are root."""
        return command_exists("firejail") and os.geteuid() == 0

    def provision(
        self, base: Path, scratch: Path, build_dir: Path, allow_network: bool
    ) -> SandboxEnv:
        """Mount the overlay root and bind /build into it.

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
            merged = mount_overlay(env)
            target = merged / BUILD_MOUNT.lstrip("/")
            target.mkdir(parents=True, exist_ok=True)
            result = run_command(["mount", "--bind", str(build_dir), str(target)], timeout=30.0)
            if not result.success:
                msg = f"bind mount of {build_dir} failed: {result.stderr.strip()}"
                raise RuntimeError(msg)
        except RuntimeError:
            unmount_overlay(env)
            shutil.rmtree(scratch, ignore_errors=True)
            raise
        return env

    def command(self, env: SandboxEnv, step: str, argv: Sequence[str]) -> list[str]:
        """Build the firejail command line for one step."""
        inner = wrap_with_strace(argv, step) if env.trace else list(argv)
        cmd = ["firejail", "--quiet", "--noprofile", f"--chroot={env.merged}"]
        if not env.allow_network:
            cmd.append("--net=none")
        # firejail has no chdir option inside a chroot
        return [*cmd, "sh", "-c", f'cd {BUILD_MOUNT} && exec "$@"', "sh", *inner]

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
        """Run one step in the jail."""
        return run_cancellable(
            self.command(env, step, argv), timeout=timeout, cancel=cancel, log_path=log_path
        )

    def trace(self, env: SandboxEnv) -> tuple[list[FileChange], list[NetworkEvent]]:
        """Diff the upper directory and read strace logs."""
        return diff_overlay(env.upper, env.base), collect_network(env.trace_dir)

    def teardown(self, env: SandboxEnv) -> None:
        """Unmount everything and remove all per-run state."""
        unmount_overlay(env)
        shutil.rmtree(env.scratch, ignore_errors=True)
