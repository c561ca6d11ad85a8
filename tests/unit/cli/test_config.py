"""Unit tests for the config commands."""

import json
from pathlib import Path

from reap.cli.main import app
from reap.core.config import load_config
from reap.core.paths import get_config_path
from typer.testing import CliRunner

runner = CliRunner()


class TestConfigCommands:
    """Tests for reap config."""

    def test_show_json(self, isolated_dirs: Path) -> None:
        """show --json prints the effective defaults."""
        result = runner.invoke(app, ["config", "show", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["sandbox"]["timeout"] == 1800.0

    def test_get(self, isolated_dirs: Path) -> None:
        """get prints one value."""
        result = runner.invoke(app, ["config", "get", "audit.allow_override"])

        assert result.exit_code == 0
        assert result.stdout.strip() == "True"

    def test_get_unknown(self, isolated_dirs: Path) -> None:
        """Unknown keys exit 1."""
        result = runner.invoke(app, ["config", "get", "sandbox.nope"])

        assert result.exit_code == 1
        assert "Unknown config key" in result.output

    def test_set(self, isolated_dirs: Path) -> None:
        """set parses TOML literals and saves the file."""
        result = runner.invoke(app, ["config", "set", "sandbox.timeout", "600"])

        assert result.exit_code == 0
        assert get_config_path().exists()
        assert load_config().sandbox.timeout == 600.0

    def test_set_invalid(self, isolated_dirs: Path) -> None:
        """Values that fail validation are rejected and nothing is written."""
        result = runner.invoke(app, ["config", "set", "parallel", "many"])

        assert result.exit_code == 1
        assert not get_config_path().exists()

    def test_reset(self, isolated_dirs: Path) -> None:
        """reset writes the defaults back."""
        runner.invoke(app, ["config", "set", "sandbox.timeout", "600"])

        result = runner.invoke(app, ["config", "reset", "--yes"])

        assert result.exit_code == 0
        assert load_config().sandbox.timeout == 1800.0

    def test_broken_file(self, isolated_dirs: Path) -> None:
        """A broken config file is reported, not raised."""
        path = get_config_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("parallel = [")

        result = runner.invoke(app, ["config", "show"])

        assert result.exit_code == 1
        assert "Invalid TOML" in result.output
