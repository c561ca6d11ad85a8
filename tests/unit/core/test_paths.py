"""Unit tests for XDG path management."""

from pathlib import Path

import pytest
from reap.core import paths


class TestXdgPaths:
    """Tests for directory resolution."""

    def test_respects_xdg_overrides(self, isolated_dirs: Path) -> None:
        """XDG variables relocate every directory."""
        assert paths.get_config_dir() == isolated_dirs / "config" / "reap"
        assert paths.get_state_dir() == isolated_dirs / "state" / "reap"
        assert paths.get_cache_dir() == isolated_dirs / "cache" / "reap"

    def test_defaults_under_home(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """Without XDG variables paths fall back under the home directory."""
        for var in ("XDG_CONFIG_HOME", "XDG_STATE_HOME", "XDG_CACHE_HOME"):
            monkeypatch.delenv(var, raising=False)
        monkeypatch.setenv("HOME", str(tmp_path))

        assert paths.get_config_dir() == tmp_path / ".config" / "reap"
        assert paths.get_state_dir() == tmp_path / ".local" / "state" / "reap"

    def test_state_layout(self, isolated_dirs: Path) -> None:
        """Persisted state lives in subdirectories of the state dir."""
        state = paths.get_state_dir()
        assert paths.get_snapshots_dir() == state / "snapshots"
        assert paths.get_audit_dir() == state / "audit"
        assert paths.get_runs_dir() == state / "runs"
        assert paths.get_lock_path() == state / "writer.lock"
        assert paths.get_config_path().name == "config.toml"
        assert paths.get_hooks_dir() == paths.get_config_dir() / "hooks"
        assert paths.get_build_dir() == paths.get_cache_dir() / "build"

    def test_ensure_dirs_creates(self, isolated_dirs: Path) -> None:
        """ensure_dirs creates config, state and cache directories."""
        paths.ensure_dirs()

        assert paths.get_config_dir().is_dir()
        assert paths.get_state_dir().is_dir()
        assert paths.get_cache_dir().is_dir()

    def test_ensure_dir_reports_failure(self, tmp_path: Path) -> None:
        """A path that cannot be created raises RuntimeError."""
        blocker = tmp_path / "file"
        blocker.write_text("x")

        with pytest.raises(RuntimeError, match="Cannot create state directory"):
            paths._ensure_dir(blocker / "sub", "state")
