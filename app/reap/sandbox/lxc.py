"""LXC sandbox driver.

Starts an ephemeral overlay clone of a prepared base container with
``lxc-copy -e``. The clone's overlay upper directory is read for the
diff; stopping the clone destroys it.
"""

import logging
import shutil
import subprocess
import uuid
from collections.abc import Sequence
from pathlib import Path

from reap.models.sandbox import BUILD_MOUNT, FileChange, NetworkEvent, SandboxKind
from reap.sandbox.driver import SandboxEnv, has_strace, prepare_scratch
from reap.sandbox.trace import collect_network, diff_overlay, wrap_with_strace
from reap.utils.cancel import CancelToken
from reap.utils.shell import CommandResult, command_exists, run_cancellable, run_command

logger = logging.getLogger(__name__)

DEFAULT_LXC_PATH = Path("/var/lib/lxc")


class LxcDriver:
    """Sandbox driver using ephemeral LXC containers.

    The configured base image path names the base container: its last
    path component is the container name.
    """

    kind = SandboxKind.LXC

    def __init__(self, lxc_path: Path = DEFAULT_LXC_PATH) -> None:
        self.lxc_path = lxc_path

    def is_available(self) -> bool:
        """Check if the LXC tools are installed."""
        return command_exists("lxc-copy") and command_exists("lxc-attach")

    def provision(
        self, base: Path, scratch: Path, build_dir: Path, allow_network: bool
    ) -> SandboxEnv:
        """Start an ephemeral clone of the base container.

        Raises:
            RuntimeError: If the clone cannot be started.
        """
        base_name = base.name
        rootfs = self.lxc_path / base_name / "rootfs"
        handle = f"reap-{uuid.uuid4().hex[:8]}"
        _, work = prepare_scratch(scratch, build_dir)
        args = [
            "lxc-copy", "-n", base_name, "-N", handle, "-e", "-B", "overlay",
            "-m", f"bind={build_dir}:{BUILD_MOUNT}",
        ]
        try:
            result = run_command(args, timeout=120.0)
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            shutil.rmtree(scratch, ignore_errors=True)
            msg = f"lxc-copy failed: {e}"
            raise RuntimeError(msg) from e
        if not result.success:
            shutil.rmtree(scratch, ignore_errors=True)
            msg = f"lxc-copy failed: {result.stderr.strip()}"
            raise RuntimeError(msg)

        if not allow_network:
            logger.debug("LXC network isolation follows the base container config")
        return SandboxEnv(
            kind=self.kind,
            base=rootfs,
            scratch=scratch,
            upper=self.lxc_path / handle / "delta0",
            work=work,
            build_dir=build_dir,
            allow_network=allow_network,
            handle=handle,
            trace=has_strace(rootfs),
        )

    def command(self, env: SandboxEnv, step: str, argv: Sequence[str]) -> list[str]:
        """Build the lxc-attach command line for one step."""
        inner = wrap_with_strace(argv, step) if env.trace else list(argv)
        return [
            "lxc-attach", "-n", str(env.handle), "--",
            "sh", "-c", f'cd {BUILD_MOUNT} && exec "$@"', "sh", *inner,
        ]

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
        """Run one step in the container."""
        return run_cancellable(
            self.command(env, step, argv), timeout=timeout, cancel=cancel, log_path=log_path
        )

    def trace(self, env: SandboxEnv) -> tuple[list[FileChange], list[NetworkEvent]]:
        """Diff the clone's overlay delta and read strace logs."""
        return diff_overlay(env.upper, env.base), collect_network(env.trace_dir)

    def teardown(self, env: SandboxEnv) -> None:
        """Stop (and thereby destroy) the ephemeral clone."""
        if env.handle is not None:
            try:
                result = run_command(["lxc-stop", "-n", env.handle, "--kill"], timeout=60.0)
            except (FileNotFoundError, subprocess.TimeoutExpired) as e:
                logger.warning("lxc-stop %s failed: %s", env.handle, e)
            else:
                if not result.success:
                    logger.warning("lxc-stop %s failed: %s", env.handle, result.stderr.strip())
        shutil.rmtree(env.scratch, ignore_errors=True)
