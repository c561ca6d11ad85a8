"""Read-only capability checks.

Doctor checks never mutate the host; a failed optional check only
limits which backends or sandboxes reap can use.
"""

import logging
import os
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

from reap.backends.base import Backend
from reap.core.config import load_config
from reap.core.errors import ConfigError
from reap.core.paths import get_state_dir
from reap.sandbox.driver import SandboxDriver
from reap.utils.shell import command_exists

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DoctorCheck:
    """Outcome of one capability check.

    Attributes:
        name: Check name shown to the user.
        passed: Whether the check succeeded.
        detail: Short explanation.
        required: Whether reap cannot work without it.
    """

    name: str
    passed: bool
    detail: str = ""
    required: bool = False


def _writable(path: Path) -> bool:
    existing = path
    while not existing.exists():
        if existing.parent == existing:
            return False
        existing = existing.parent
    return existing.is_dir() and os.access(existing, os.W_OK | os.X_OK)


def run_checks(
    backends: Iterable[Backend],
    drivers: Sequence[SandboxDriver],
    state_dir: Path | None = None,
    config_path: Path | None = None,
) -> list[DoctorCheck]:
    """Check backends, sandboxes and local prerequisites.

    Args:
        backends: Package backends to check.
        drivers: Sandbox drivers to check.
        state_dir: State directory to test for writability.
        config_path: Config file to load (None = default location).

    Returns:
        Checks in a stable order.
    """
    checks: list[DoctorCheck] = []

    try:
        load_config(config_path)
    except ConfigError as e:
        checks.append(DoctorCheck("config", False, str(e), required=True))
    else:
        checks.append(DoctorCheck("config", True, "loads", required=True))

    directory = state_dir or get_state_dir()
    writable = _writable(directory)
    checks.append(
        DoctorCheck(
            "state dir",
            writable,
            str(directory) if writable else f"{directory} is not writable",
            required=True,
        )
    )

    for backend in backends:
        available = backend.is_available()
        checks.append(
            DoctorCheck(
                f"backend {backend.origin.value}",
                available,
                "available" if available else "unavailable",
            )
        )

    usable: list[str] = []
    for driver in drivers:
        available = driver.is_available()
        if available:
            usable.append(driver.kind.value)
        checks.append(
            DoctorCheck(
                f"sandbox {driver.kind.value}",
                available,
                "available" if available else "unavailable",
            )
        )
    checks.append(
        DoctorCheck(
            "sandbox",
            bool(usable),
            ", ".join(usable) if usable else "no sandbox backend available",
            required=True,
        )
    )

    has_gpg = command_exists("gpg")
    checks.append(
        DoctorCheck("gpg", has_gpg, "found" if has_gpg else "signature checks will fail")
    )

    for check in checks:
        logger.debug("doctor %s: %s (%s)", check.name, check.passed, check.detail)
    return checks
