"""XDG-compliant path management for reap.

This module provides standardized paths following the XDG Base Directory
Specification for configuration, state, and cache storage. Persisted
state lives outside any sandbox or managed root so it survives sandbox
teardown and host changes.

XDG defaults:
- Config: ~/.config/reap/
- State: ~/.local/state/reap/
- Cache: ~/.cache/reap/
"""

import os
from pathlib import Path

# Application identifier for directory naming
APP_NAME = "reap"


def _get_xdg_dir(env_var: str, default_subdir: str) -> Path:
    """Get XDG directory respecting environment variable override.

    Args:
        env_var: XDG environment variable name (e.g., "XDG_CONFIG_HOME").
        default_subdir: Default subdirectory under home (e.g., ".config").

    Returns:
        Path to the application-specific directory.
    """
    base = os.environ.get(env_var)
    if base:
        return Path(base) / APP_NAME
    return Path.home() / default_subdir / APP_NAME


def get_config_dir() -> Path:
    """Get the configuration directory path.

    Returns:
        Path to ~/.config/reap/ (or XDG_CONFIG_HOME/reap/).
    """
    return _get_xdg_dir("XDG_CONFIG_HOME", ".config")


def get_state_dir() -> Path:
    """Get the state directory path.

    State data includes the transaction journal, snapshots, audit records
    and persisted sandbox runs.

    Returns:
        Path to ~/.local/state/reap/ (or XDG_STATE_HOME/reap/).
    """
    return _get_xdg_dir("XDG_STATE_HOME", ".local/state")


def get_cache_dir() -> Path:
    """Get the cache directory path.

    Cache data includes fetched sources and build outputs.

    Returns:
        Path to ~/.cache/reap/ (or XDG_CACHE_HOME/reap/).
    """
    return _get_xdg_dir("XDG_CACHE_HOME", ".cache")


def get_config_path() -> Path:
    """Get the main configuration file path.

    Returns:
        Path to ~/.config/reap/config.toml.
    """
    return get_config_dir() / "config.toml"


def get_hooks_dir() -> Path:
    """Get the directory holding user hook scripts.

    Returns:
        Path to ~/.config/reap/hooks/.
    """
    return get_config_dir() / "hooks"


def get_snapshots_dir() -> Path:
    """Get the snapshot store directory.

    Returns:
        Path to ~/.local/state/reap/snapshots/.
    """
    return get_state_dir() / "snapshots"


def get_audit_dir() -> Path:
    """Get the audit store directory (recipes and result cache).

    Returns:
        Path to ~/.local/state/reap/audit/.
    """
    return get_state_dir() / "audit"


def get_runs_dir() -> Path:
    """Get the persisted sandbox run directory.

    Returns:
        Path to ~/.local/state/reap/runs/.
    """
    return get_state_dir() / "runs"


def get_lock_path() -> Path:
    """Get the global writer lock file path.

    Returns:
        Path to ~/.local/state/reap/writer.lock.
    """
    return get_state_dir() / "writer.lock"


def get_build_dir() -> Path:
    """Get the directory for fetched sources and built packages.

    Returns:
        Path to ~/.cache/reap/build/.
    """
    return get_cache_dir() / "build"


def _ensure_dir(path: Path, name: str) -> Path:
    """Create directory if it doesn't exist.

    Args:
        path: Directory path to create.
        name: Human-readable name for error messages.

    Returns:
        The created/existing directory path.

    Raises:
        RuntimeError: If directory cannot be created.
    """
    try:
        path.mkdir(parents=True, exist_ok=True)
    except PermissionError as e:
        msg = f"Cannot create {name} directory {path}: Permission denied"
        raise RuntimeError(msg) from e
    except OSError as e:
        msg = f"Cannot create {name} directory {path}: {e}"
        raise RuntimeError(msg) from e
    return path


def ensure_config_dir() -> Path:
    """Create the configuration directory if it doesn't exist.

    Returns:
        Path to the configuration directory.

    Raises:
        RuntimeError: If the directory cannot be created.
    """
    return _ensure_dir(get_config_dir(), "config")


def ensure_state_dir() -> Path:
    """Create the state directory if it doesn't exist.

    Returns:
        Path to the state directory.

    Raises:
        RuntimeError: If the directory cannot be created.
    """
    return _ensure_dir(get_state_dir(), "state")


def ensure_cache_dir() -> Path:
    """Create the cache directory if it doesn't exist.

    Returns:
        Path to the cache directory.

    Raises:
        RuntimeError: If the directory cannot be created.
    """
    return _ensure_dir(get_cache_dir(), "cache")


def ensure_dirs() -> None:
    """Create all required application directories."""
    ensure_config_dir()
    ensure_state_dir()
    ensure_cache_dir()
