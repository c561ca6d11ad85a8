"""Pacman host operator.

Installs exactly the package files the sandbox built or downloaded, so
the host receives the same bytes that were test-installed.
"""

import logging
import subprocess

from reap.models.action import Action, ActionResult, ActionType
from reap.models.record import BackendOrigin, FetchedArtifact
from reap.operators.base import Operator
from reap.utils.shell import command_exists, run_command

logger = logging.getLogger(__name__)


class PacmanOperator(Operator):
    """Operator for pacman packages from repositories, AUR, Chaotic-AUR and taps."""

    # Timeout for pacman transactions (10 minutes)
    _PACMAN_TIMEOUT: float = 600.0

    @property
    def origins(self) -> frozenset[BackendOrigin]:
        """Every origin that yields pacman packages."""
        return frozenset(
            {BackendOrigin.PACMAN, BackendOrigin.AUR, BackendOrigin.CHAOTIC, BackendOrigin.TAP}
        )

    def is_available(self) -> bool:
        """Check if pacman is installed."""
        return command_exists("pacman")

    def install(self, artifact: FetchedArtifact) -> ActionResult:
        """Install the artifact's package files with ``pacman -U``.

        Raises:
            RuntimeError: If pacman is not available.
        """
        if not self.is_available():
            msg = "pacman is not available on this system"
            raise RuntimeError(msg)

        record = artifact.record
        action = Action(
            action_type=ActionType.INSTALL,
            package=record.name,
            origin=record.origin,
        )
        packages = artifact.built_packages()
        if not packages:
            return ActionResult(
                action=action,
                success=False,
                error=f"no package files in {artifact.workdir / 'out'}",
            )

        args = ["pacman", "-U", "--noconfirm", "--needed", *(str(p) for p in packages)]
        logger.info("Installing %s from %d package file(s)", record.key, len(packages))
        try:
            result = run_command(args, timeout=self._PACMAN_TIMEOUT)
        except subprocess.TimeoutExpired:
            return ActionResult(action=action, success=False, error="pacman timed out")

        if result.success:
            return ActionResult(action=action, success=True)
        logger.error("pacman -U failed for %s: %s", record.key, result.stderr.strip())
        return ActionResult(action=action, success=False, error=self._error_detail(result))
