"""Unit tests for the search command."""

import json
from unittest.mock import patch

from reap.cli.main import app
from reap.models.record import BackendOrigin
from typer.testing import CliRunner

runner = CliRunner()


class TestSearchCommand:
    """Tests for reap search."""

    def test_results(self, isolated_dirs, make_backend, make_record) -> None:
        """Matching records are listed."""
        backend = make_backend(records=[make_record("ripgrep"), make_record("fd")])

        with patch("reap.cli.commands.search.get_backends", return_value=[backend]):
            result = runner.invoke(app, ["search", "rip"])

        assert result.exit_code == 0
        assert "ripgrep" in result.output
        assert "fd" not in result.output

    def test_json(self, isolated_dirs, make_backend, make_record) -> None:
        """--json prints records and backend statuses."""
        backend = make_backend(records=[make_record("ripgrep")])

        with patch("reap.cli.commands.search.get_backends", return_value=[backend]):
            result = runner.invoke(app, ["search", "--json", "ripgrep"])

        data = json.loads(result.stdout)
        assert data["records"][0]["name"] == "ripgrep"
        assert data["statuses"]["tap"] == "ok"

    def test_nothing_found(self, isolated_dirs, make_backend) -> None:
        """No matches exit 1."""
        with patch("reap.cli.commands.search.get_backends", return_value=[make_backend()]):
            result = runner.invoke(app, ["search", "zzz"])

        assert result.exit_code == 1
        assert "No packages match" in result.output

    def test_degraded_backend_warns(self, isolated_dirs, make_backend, make_record) -> None:
        """A failing backend is reported while others still answer."""
        good = make_backend(records=[make_record("ripgrep")])
        bad = make_backend(BackendOrigin.AUR, error=RuntimeError("rpc down"))

        with patch("reap.cli.commands.search.get_backends", return_value=[good, bad]):
            result = runner.invoke(app, ["search", "ripgrep"])

        assert result.exit_code == 0
        assert "aur unavailable" in result.output
