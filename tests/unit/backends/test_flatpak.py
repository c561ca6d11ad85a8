"""Unit tests for the Flatpak backend."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from reap.backends.flatpak import FlatpakBackend
from reap.models.record import BackendOrigin
from reap.utils.shell import CommandResult

SEARCH_OUTPUT = (
    "Application ID\tVersion\tBranch\tRemotes\tDescription\n"
    "org.gimp.GIMP\t2.10.38\tstable\tflathub,fedora\tGNU Image Manipulation Program\n"
    "org.gimp.GIMP.Plugin.Resynthesizer\t\tstable\tflathub\t\n"
)


@patch("reap.backends.flatpak.command_exists", return_value=True)
class TestFlatpakBackend:
    """Tests for FlatpakBackend."""

    @patch("reap.backends.flatpak.run_command")
    def test_query(self, mock_run: MagicMock, _exists: MagicMock) -> None:
        """Tab-separated output becomes records; the header is skipped."""
        mock_run.return_value = CommandResult(stdout=SEARCH_OUTPUT, stderr="", returncode=0)

        records = FlatpakBackend().query("gimp")

        assert [r.name for r in records] == ["org.gimp.GIMP", "org.gimp.GIMP.Plugin.Resynthesizer"]
        assert records[0].source == "flathub"
        assert records[0].origin == BackendOrigin.FLATPAK
        assert records[1].version == "stable"
        assert records[1].description is None

    @patch("reap.backends.flatpak.run_command")
    def test_search_exact(self, mock_run: MagicMock, _exists: MagicMock) -> None:
        """search keeps only the exact application ID."""
        mock_run.return_value = CommandResult(stdout=SEARCH_OUTPUT, stderr="", returncode=0)

        assert [r.name for r in FlatpakBackend().search("org.gimp.GIMP")] == ["org.gimp.GIMP"]

    @patch("reap.backends.flatpak.run_command")
    def test_failure(self, mock_run: MagicMock, _exists: MagicMock) -> None:
        """A failing search raises RuntimeError."""
        mock_run.return_value = CommandResult(stdout="", stderr="no remotes", returncode=1)

        with pytest.raises(RuntimeError, match="no remotes"):
            FlatpakBackend().query("gimp")

    def test_sandbox_steps(self, _exists: MagicMock, tmp_path: Path, make_record) -> None:
        """The application is installed from its remote."""
        backend = FlatpakBackend()
        record = make_record("org.gimp.GIMP", origin=BackendOrigin.FLATPAK, source="flathub")

        steps = backend.sandbox_steps(backend.fetch(record, tmp_path / "gimp"))

        assert steps[0].argv[-2:] == ("flathub", "org.gimp.GIMP")
