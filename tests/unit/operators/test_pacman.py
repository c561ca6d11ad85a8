"""Unit tests for PacmanOperator.

Tests for installing sandbox-built package files on the host.
"""

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest
from reap.models.action import ActionType
from reap.models.record import BackendOrigin, FetchedArtifact
from reap.operators.pacman import PacmanOperator
from reap.utils.shell import CommandResult


class TestPacmanOperator:
    """Tests for PacmanOperator class."""

    @pytest.fixture
    def operator(self) -> PacmanOperator:
        """Create PacmanOperator instance."""
        return PacmanOperator()

    @pytest.fixture
    def artifact(self, tmp_path: Path, make_record) -> FetchedArtifact:
        """Artifact with one built package and a stray log file."""
        out = tmp_path / "out"
        out.mkdir()
        (out / "yay-12.3.5-1-x86_64.pkg.tar.zst").write_bytes(b"pkg")
        (out / "build.log").write_text("log")
        record = make_record("yay", version="12.3.5-1", origin=BackendOrigin.AUR)
        return FetchedArtifact(record=record, workdir=tmp_path)

    def test_handles_pacman_origins(self, operator: PacmanOperator) -> None:
        """Every origin except Flatpak is installed with pacman."""
        assert operator.handles(BackendOrigin.AUR) is True
        assert operator.handles(BackendOrigin.TAP) is True
        assert operator.handles(BackendOrigin.FLATPAK) is False

    def test_install_success(self, operator: PacmanOperator, artifact: FetchedArtifact) -> None:
        """install() passes exactly the built package files to pacman -U."""
        with (
            patch("reap.operators.pacman.command_exists", return_value=True),
            patch("reap.operators.pacman.run_command") as mock_run,
        ):
            mock_run.return_value = CommandResult(stdout="", stderr="", returncode=0)

            result = operator.install(artifact)

        assert result.success is True
        assert result.action.action_type == ActionType.INSTALL
        args = mock_run.call_args[0][0]
        assert args[:4] == ["pacman", "-U", "--noconfirm", "--needed"]
        assert args[4:] == [str(artifact.workdir / "out" / "yay-12.3.5-1-x86_64.pkg.tar.zst")]

    def test_install_failure(self, operator: PacmanOperator, artifact: FetchedArtifact) -> None:
        """A failed transaction returns the pacman error."""
        with (
            patch("reap.operators.pacman.command_exists", return_value=True),
            patch("reap.operators.pacman.run_command") as mock_run,
        ):
            mock_run.return_value = CommandResult(
                stdout="",
                stderr="error: failed to commit transaction (conflicting files)",
                returncode=1,
            )

            result = operator.install(artifact)

        assert result.success is False
        assert "conflicting files" in (result.error or "")

    def test_install_timeout(self, operator: PacmanOperator, artifact: FetchedArtifact) -> None:
        """A hanging pacman is reported as a failed result."""
        with (
            patch("reap.operators.pacman.command_exists", return_value=True),
            patch(
                "reap.operators.pacman.run_command",
                side_effect=subprocess.TimeoutExpired(cmd="pacman", timeout=600),
            ),
        ):
            result = operator.install(artifact)

        assert result.success is False
        assert result.error == "pacman timed out"

    def test_no_package_files(self, operator: PacmanOperator, tmp_path: Path, make_record) -> None:
        """Nothing built means nothing to install."""
        artifact = FetchedArtifact(record=make_record("yay"), workdir=tmp_path)

        with patch("reap.operators.pacman.command_exists", return_value=True):
            result = operator.install(artifact)

        assert result.success is False
        assert "no package files" in (result.error or "")

    def test_unavailable(self, operator: PacmanOperator, artifact: FetchedArtifact) -> None:
        """install() raises RuntimeError without pacman."""
        with (
            patch("reap.operators.pacman.command_exists", return_value=False),
            pytest.raises(RuntimeError, match="not available"),
        ):
            operator.install(artifact)
