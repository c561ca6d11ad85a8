"""Unit tests for configuration loading and editing."""

import tomllib
from pathlib import Path

import pytest
from pydantic import ValidationError
from reap.core.config import (
    ReapConfig,
    get_config_value,
    load_config,
    save_config,
    set_config_value,
)
from reap.core.errors import ConfigError


class TestReapConfig:
    """Tests for the configuration model."""

    def test_defaults(self) -> None:
        """Defaults cover every section."""
        config = ReapConfig()
        assert config.backends.order == ["tap", "pacman", "chaotic", "aur", "flatpak"]
        assert config.sandbox.order[0] == "bubblewrap"
        assert config.trust.allow_unsigned is False
        assert config.audit.allow_override is True
        assert config.snapshots.keep == 10
        assert config.hooks.blocking == []
        assert config.parallel == 4

    def test_unknown_keys_rejected(self) -> None:
        """Typos in config keys are errors."""
        with pytest.raises(ValidationError):
            ReapConfig.model_validate({"sandbox": {"timeot": 5}})

    def test_duplicate_backend_rejected(self) -> None:
        """A backend may appear once in the order."""
        with pytest.raises(ValidationError, match="Duplicate backend"):
            ReapConfig.model_validate({"backends": {"order": ["aur", "aur"]}})

    def test_trusted_keys_normalized(self) -> None:
        """Fingerprints are stored uppercase without spaces."""
        config = ReapConfig.model_validate({"trust": {"trusted_keys": ["abcd ef01"]}})
        assert config.trust.trusted_keys == ["ABCDEF01"]

    def test_is_ignored(self) -> None:
        """Ignored packages are reported."""
        config = ReapConfig(ignored=["linux"])
        assert config.is_ignored("linux") is True
        assert config.is_ignored("ripgrep") is False


class TestLoadSave:
    """Tests for TOML persistence."""

    def test_missing_file_yields_defaults(self, tmp_path: Path) -> None:
        """A missing config file is the default config."""
        assert load_config(tmp_path / "config.toml") == ReapConfig()

    def test_roundtrip(self, tmp_path: Path) -> None:
        """Saved config loads back identically."""
        path = tmp_path / "reap" / "config.toml"
        config = ReapConfig(ignored=["linux"], parallel=2)
        config.sandbox.timeout = 60

        save_config(config, path)

        assert load_config(path) == config
        with path.open("rb") as f:
            assert tomllib.load(f)["sandbox"]["timeout"] == 60

    def test_invalid_toml(self, tmp_path: Path) -> None:
        """Broken TOML raises ConfigError."""
        path = tmp_path / "config.toml"
        path.write_text("[sandbox\n")

        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config(path)

    def test_invalid_content(self, tmp_path: Path) -> None:
        """Schema violations raise ConfigError."""
        path = tmp_path / "config.toml"
        path.write_text("parallel = 0\n")

        with pytest.raises(ConfigError, match="Invalid config content"):
            load_config(path)


class TestDottedKeys:
    """Tests for get/set by dotted key."""

    def test_get_value(self) -> None:
        """Nested values are reachable by dotted key."""
        assert get_config_value(ReapConfig(), "snapshots.keep") == 10

    def test_get_unknown_key(self) -> None:
        """Unknown keys raise ConfigError."""
        with pytest.raises(ConfigError, match="Unknown config key"):
            get_config_value(ReapConfig(), "sandbox.nope")

    def test_set_parses_toml_literals(self) -> None:
        """Values are parsed as TOML literals."""
        config = set_config_value(ReapConfig(), "sandbox.allow_network", "false")
        config = set_config_value(config, "backends.order", '["aur", "pacman"]')

        assert config.sandbox.allow_network is False
        assert config.backends.order == ["aur", "pacman"]

    def test_set_plain_string(self) -> None:
        """Values that are not TOML literals are taken as strings."""
        config = set_config_value(ReapConfig(), "sandbox.base_image", "/srv/base")
        assert config.sandbox.base_image == "/srv/base"

    def test_set_invalid_value(self) -> None:
        """Values violating the schema raise ConfigError."""
        with pytest.raises(ConfigError, match="Invalid value for parallel"):
            set_config_value(ReapConfig(), "parallel", "0")
