"""reap configuration and settings.

This module provides the configuration model and I/O functions for the
install lifecycle: backend preference order, sandbox backend order,
trust policy, audit override policy, snapshot retention, ignored
packages and hook policy.

Configuration is stored in ~/.config/reap/config.toml
"""

import logging
import os
import tomllib
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Annotated, Any, Literal

import tomli_w
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from reap.core.errors import ConfigError
from reap.core.paths import get_config_path

logger = logging.getLogger(__name__)

BackendName = Literal["pacman", "aur", "chaotic", "flatpak", "tap"]
SandboxName = Literal["bubblewrap", "nspawn", "firejail", "lxc"]
HookPoint = Literal["pre_install", "post_build", "post_install", "on_rollback"]

DEFAULT_BACKEND_ORDER: list[BackendName] = ["tap", "pacman", "chaotic", "aur", "flatpak"]
DEFAULT_SANDBOX_ORDER: list[SandboxName] = ["bubblewrap", "nspawn", "firejail", "lxc"]


def _no_duplicates(values: list[str], what: str) -> list[str]:
    seen: set[str] = set()
    for value in values:
        if value in seen:
            msg = f"Duplicate {what} in order: {value}"
            raise ValueError(msg)
        seen.add(value)
    return values


class BackendsConfig(BaseModel):
    """Package source settings.

    Attributes:
        order: Backend preference order used for tie-breaks.
        query_timeout: Seconds before a slow backend is marked unavailable.
        aur_rpc_url: Base URL of the AUR RPC interface.
        taps_dir: Directory holding cloned Git taps (None = state default).
    """

    model_config = ConfigDict(extra="forbid")

    order: Annotated[
        list[BackendName],
        Field(
            default_factory=lambda: list(DEFAULT_BACKEND_ORDER),
            description="Backend preference order",
        ),
    ]
    query_timeout: Annotated[
        float,
        Field(gt=0, le=300, description="Per-backend query timeout in seconds"),
    ] = 10.0
    aur_rpc_url: Annotated[str, Field(description="AUR RPC endpoint")] = (
        "https://aur.archlinux.org/rpc/v5"
    )
    taps_dir: Annotated[str | None, Field(description="Directory of cloned taps")] = None

    @field_validator("order")
    @classmethod
    def validate_order(cls, v: list[str]) -> list[str]:
        """Reject duplicate backends."""
        return _no_duplicates(v, "backend")


class SandboxConfig(BaseModel):
    """Sandbox orchestration settings.

    Attributes:
        order: Sandbox backend preference order (fallback chain).
        timeout: Maximum seconds for a build/install step.
        base_image: Path to the known-clean base root.
        allow_network: Whether build steps may reach the network.
    """

    model_config = ConfigDict(extra="forbid")

    order: Annotated[
        list[SandboxName],
        Field(
            default_factory=lambda: list(DEFAULT_SANDBOX_ORDER),
            description="Sandbox backend preference order",
        ),
    ]
    timeout: Annotated[
        float,
        Field(gt=0, le=86400, description="Sandbox step timeout in seconds"),
    ] = 1800.0
    base_image: Annotated[str, Field(description="Clean base root for sandboxes")] = (
        "/var/lib/reap/base"
    )
    allow_network: Annotated[bool, Field(description="Allow network inside sandbox")] = True

    @field_validator("order")
    @classmethod
    def validate_order(cls, v: list[str]) -> list[str]:
        """Reject duplicate sandbox backends."""
        return _no_duplicates(v, "sandbox backend")


class TrustConfig(BaseModel):
    """Signature and audit step policy.

    Attributes:
        allow_unsigned: Downgrade missing/invalid signatures to warn.
        keyring: Optional GnuPG keyring used for verification.
        trusted_keys: Fingerprints accepted as valid signers.
        skip_signature: Skip the signature step.
        skip_diff: Skip the recipe diff step.
        skip_lint: Skip the static lint step.
    """

    model_config = ConfigDict(extra="forbid")

    allow_unsigned: bool = False
    keyring: str | None = None
    trusted_keys: list[str] = Field(default_factory=list)
    skip_signature: bool = False
    skip_diff: bool = False
    skip_lint: bool = False

    @field_validator("trusted_keys")
    @classmethod
    def normalize_keys(cls, v: list[str]) -> list[str]:
        """Store fingerprints uppercase without spaces."""
        return [key.replace(" ", "").upper() for key in v]


class AuditConfig(BaseModel):
    """Audit override policy.

    Attributes:
        allow_override: Whether an operator may override a blocked verdict.
    """

    model_config = ConfigDict(extra="forbid")

    allow_override: bool = True


class SnapshotConfig(BaseModel):
    """Snapshot retention policy.

    Attributes:
        keep: Number of most recent snapshots always retained.
        max_age_days: Snapshots older than this are pruned (0 = no age limit).
    """

    model_config = ConfigDict(extra="forbid")

    keep: Annotated[int, Field(ge=1, le=1000)] = 10
    max_age_days: Annotated[int, Field(ge=0, le=3650)] = 30


class HooksConfig(BaseModel):
    """Lifecycle hook policy.

    Attributes:
        blocking: Hook points whose failure aborts the unit.
        interpreter: Program used to run hook scripts.
    """

    model_config = ConfigDict(extra="forbid")

    blocking: list[HookPoint] = Field(default_factory=list)
    interpreter: str = "lua"


class ReapConfig(BaseModel):
    """Complete reap configuration."""

    model_config = ConfigDict(extra="forbid")

    backends: BackendsConfig = Field(default_factory=BackendsConfig)
    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)
    trust: TrustConfig = Field(default_factory=TrustConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    snapshots: SnapshotConfig = Field(default_factory=SnapshotConfig)
    hooks: HooksConfig = Field(default_factory=HooksConfig)
    ignored: list[str] = Field(default_factory=list)
    parallel: Annotated[int, Field(ge=1, le=64, description="Worker pool size")] = 4

    def is_ignored(self, name: str) -> bool:
        """Check whether a package name is excluded from resolution."""
        return name in self.ignored


def load_config(path: Path | None = None) -> ReapConfig:
    """Load configuration from a TOML file.

    A missing file yields the default configuration.

    Args:
        path: Path to the config file. If None, uses the default path.

    Returns:
        Validated ReapConfig object.

    Raises:
        ConfigError: If the file cannot be read, parsed or validated.
    """
    config_path = path or get_config_path()

    if not config_path.exists():
        logger.debug("No config at %s, using defaults", config_path)
        return ReapConfig()

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML syntax in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config {config_path}: {e}") from e

    try:
        return ReapConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config content in {config_path}: {e}") from e


def save_config(config: ReapConfig, path: Path | None = None) -> Path:
    """Save configuration to a TOML file.

    The file is written atomically by first writing to a temporary file
    and then using os.replace() for atomic rename.

    Args:
        config: The configuration to save.
        path: Destination path. If None, uses the default path.

    Returns:
        Path where the config was saved.

    Raises:
        ConfigError: If the file cannot be written.
    """
    config_path = path or get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data = config.model_dump(mode="json", exclude_none=True)

    tmp_path: Path | None = None
    try:
        with NamedTemporaryFile(
            mode="wb",
            dir=config_path.parent,
            delete=False,
            suffix=".tmp",
        ) as f:
            tmp_path = Path(f.name)
            tomli_w.dump(data, f)
        os.replace(str(tmp_path), str(config_path))
    except OSError as e:
        if tmp_path is not None and tmp_path.exists():
            tmp_path.unlink()
        raise ConfigError(f"Failed to write config: {e}") from e

    return config_path


def get_config_value(config: ReapConfig, key: str) -> Any:
    """Look up a dotted key such as ``sandbox.timeout``.

    Raises:
        ConfigError: If the key does not exist.
    """
    node: Any = config.model_dump(mode="json")
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            raise ConfigError(f"Unknown config key: {key}")
        node = node[part]
    return node


def set_config_value(config: ReapConfig, key: str, raw: str) -> ReapConfig:
    """Return a new config with a dotted key set from a string value.

    The value is parsed as a TOML literal when possible (numbers,
    booleans, arrays), falling back to a plain string.

    Raises:
        ConfigError: If the key does not exist or the result is invalid.
    """
    get_config_value(config, key)

    try:
        value: Any = tomllib.loads(f"v = {raw}")["v"]
    except tomllib.TOMLDecodeError:
        value = raw

    data = config.model_dump(mode="json")
    node = data
    parts = key.split(".")
    for part in parts[:-1]:
        node = node[part]
    node[parts[-1]] = value

    try:
        return ReapConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid value for {key}: {e}") from e
