"""Shell execution utilities.

Provides safe subprocess execution with proper error handling, plus a
cancellable variant used for long-running build steps.
"""

import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

from reap.utils.cancel import CancelToken

# Poll interval while waiting on a cancellable child process
_POLL_INTERVAL = 0.2


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Result of a shell command execution.

    Attributes:
        stdout: Standard output from the command.
        stderr: Standard error from the command.
        returncode: Exit code of the command.
        timed_out: Whether the command was killed after exceeding its timeout.
        cancelled: Whether the command was killed due to cancellation.
    """

    stdout: str
    stderr: str
    returncode: int
    timed_out: bool = False
    cancelled: bool = False

    @property
    def success(self) -> bool:
        """Check if command executed successfully."""
        return self.returncode == 0 and not self.timed_out and not self.cancelled


def run_command(
    args: list[str],
    *,
    check: bool = False,
    timeout: float | None = 60.0,
    cwd: str | None = None,
    input_text: str | None = None,
    env: dict[str, str] | None = None,
) -> CommandResult:
    """Execute a shell command and return the result.

    Args:
        args: Command and arguments to execute.
        check: If True, raise CalledProcessError on non-zero exit.
        timeout: Maximum time in seconds to wait for command.
        cwd: Working directory for the command. If None, uses current directory.
        input_text: Optional text passed to the command's stdin.
        env: Optional full environment for the child process.

    Returns:
        CommandResult with stdout, stderr, and returncode.

    Raises:
        subprocess.CalledProcessError: If check=True and command fails.
        subprocess.TimeoutExpired: If command exceeds timeout.
        FileNotFoundError: If command executable is not found.
    """
    result = subprocess.run(
        args,
        capture_output=True,
        text=True,
        check=check,
        timeout=timeout,
        cwd=cwd,
        input=input_text,
        env=env,
    )
    return CommandResult(
        stdout=result.stdout,
        stderr=result.stderr,
        returncode=result.returncode,
    )


def run_cancellable(
    args: list[str],
    *,
    timeout: float | None = None,
    cancel: CancelToken | None = None,
    cwd: str | None = None,
    log_path: Path | None = None,
) -> CommandResult:
    """Execute a command that can be interrupted by timeout or cancellation.

    Output is captured; if ``log_path`` is given, it is also appended to
    that file once the command finishes.

    Unlike run_command(), a timeout does not raise: the child is killed
    and the result is marked ``timed_out``. The same applies to
    cancellation, which marks the result ``cancelled``.

    Args:
        args: Command and arguments to execute.
        timeout: Maximum wall-clock seconds before the child is killed.
        cancel: Optional token polled while the child runs.
        cwd: Working directory for the command.
        log_path: Optional file receiving the combined output.

    Returns:
        CommandResult describing how the command ended.

    Raises:
        FileNotFoundError: If command executable is not found.
    """
    proc = subprocess.Popen(
        args,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        cwd=cwd,
    )
    deadline = time.monotonic() + timeout if timeout is not None else None
    timed_out = False
    cancelled = False

    while True:
        try:
            stdout, stderr = proc.communicate(timeout=_POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            if cancel is not None and cancel.cancelled:
                cancelled = True
            elif deadline is not None and time.monotonic() >= deadline:
                timed_out = True
            else:
                continue
            proc.kill()
            stdout, stderr = proc.communicate()
            break

    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with log_path.open(mode="a", encoding="utf-8") as f:
            f.write(f"$ {' '.join(args)}\n")
            f.write(stdout or "")
            f.write(stderr or "")

    return CommandResult(
        stdout=stdout or "",
        stderr=stderr or "",
        returncode=proc.returncode if proc.returncode is not None else -1,
        timed_out=timed_out,
        cancelled=cancelled,
    )


def command_exists(name: str) -> bool:
    """Check if a command exists in the system PATH.

    Args:
        name: Command name to check.

    Returns:
        True if command exists, False otherwise.
    """
    return shutil.which(name) is not None
