"""Unit tests for shell execution utilities."""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from reap.utils.cancel import CancelToken
from reap.utils.shell import CommandResult, command_exists, run_cancellable, run_command


class TestCommandResult:
    """Tests for CommandResult."""

    def test_success_on_zero_exit(self) -> None:
        """A zero exit status is a success."""
        assert CommandResult(stdout="", stderr="", returncode=0).success is True

    def test_failure_on_nonzero_exit(self) -> None:
        """A non-zero exit status is a failure."""
        assert CommandResult(stdout="", stderr="", returncode=1).success is False

    def test_timed_out_is_failure(self) -> None:
        """A killed command is never a success."""
        result = CommandResult(stdout="", stderr="", returncode=0, timed_out=True)
        assert result.success is False

    def test_cancelled_is_failure(self) -> None:
        """A cancelled command is never a success."""
        result = CommandResult(stdout="", stderr="", returncode=0, cancelled=True)
        assert result.success is False


class TestRunCommand:
    """Tests for run_command function."""

    @patch("reap.utils.shell.subprocess.run")
    def test_returns_captured_output(self, mock_run: MagicMock) -> None:
        """run_command wraps subprocess output in a CommandResult."""
        mock_run.return_value = MagicMock(stdout="out", stderr="err", returncode=2)

        result = run_command(["pacman", "-Qm"])

        assert result == CommandResult(stdout="out", stderr="err", returncode=2)

    @patch("reap.utils.shell.subprocess.run")
    def test_passes_input_and_env(self, mock_run: MagicMock) -> None:
        """run_command forwards stdin text and environment."""
        mock_run.return_value = MagicMock(stdout="", stderr="", returncode=0)

        run_command(["lua", "hook.lua"], input_text="{}", env={"REAP_PACKAGE": "foo"})

        kwargs = mock_run.call_args.kwargs
        assert kwargs["input"] == "{}"
        assert kwargs["env"] == {"REAP_PACKAGE": "foo"}
        assert kwargs["capture_output"] is True

    @patch("reap.utils.shell.subprocess.run")
    def test_timeout_propagates(self, mock_run: MagicMock) -> None:
        """run_command lets TimeoutExpired propagate."""
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="git", timeout=1)

        with pytest.raises(subprocess.TimeoutExpired):
            run_command(["git", "clone", "x"], timeout=1)


class TestRunCancellable:
    """Tests for run_cancellable function."""

    def test_completes_normally(self, tmp_path: Path) -> None:
        """A quick command finishes and its output is logged."""
        log = tmp_path / "run.log"

        result = run_cancellable(["sh", "-c", "echo built"], timeout=10, log_path=log)

        assert result.success
        assert result.stdout == "built\n"
        assert "$ sh -c echo built" in log.read_text()
        assert "built" in log.read_text()

    def test_timeout_kills_child(self) -> None:
        """A command exceeding its timeout is killed and marked timed out."""
        result = run_cancellable(["sh", "-c", "sleep 10"], timeout=0.3)

        assert result.timed_out is True
        assert result.cancelled is False
        assert not result.success

    def test_cancel_kills_child(self) -> None:
        """A cancelled token kills the child and marks the result cancelled."""
        token = CancelToken()
        token.cancel()

        result = run_cancellable(["sh", "-c", "sleep 10"], timeout=30, cancel=token)

        assert result.cancelled is True
        assert not result.success

    def test_missing_executable_raises(self) -> None:
        """A missing executable raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            run_cancellable(["nonexistent_command_xyz_12345"])


class TestCommandExists:
    """Tests for command_exists function."""

    @patch("reap.utils.shell.shutil.which", return_value="/usr/bin/bwrap")
    def test_found(self, _which: MagicMock) -> None:
        """command_exists is True when the command is on PATH."""
        assert command_exists("bwrap") is True

    @patch("reap.utils.shell.shutil.which", return_value=None)
    def test_missing(self, _which: MagicMock) -> None:
        """command_exists is False when the command is not on PATH."""
        assert command_exists("bwrap") is False
