"""Flatpak host operator.

Executes application installation using the flatpak CLI.
"""

import logging
import subprocess

from reap.models.action import Action, ActionResult, ActionType
from reap.models.record import BackendOrigin, FetchedArtifact
from reap.operators.base import Operator
from reap.utils.shell import command_exists, run_command

logger = logging.getLogger(__name__)


class FlatpakOperator(Operator):
    """Operator for Flatpak applications."""

    # Timeout for flatpak operations (5 minutes)
    _FLATPAK_TIMEOUT: float = 300.0

    @property
    def origins(self) -> frozenset[BackendOrigin]:
        """Return FLATPAK."""
        return frozenset({BackendOrigin.FLATPAK})

    def is_available(self) -> bool:
        """Check if flatpak CLI is available."""
        return command_exists("flatpak")

    def install(self, artifact: FetchedArtifact) -> ActionResult:
        """Install the application system-wide from its remote.

        Raises:
            RuntimeError: If flatpak is not available.
        """
        if not self.is_available():
            msg = "Flatpak is not available on this system"
            raise RuntimeError(msg)

        record = artifact.record
        action = Action(action_type=ActionType.INSTALL, package=record.name, origin=record.origin)
        # -y: non-interactive, --system: same scope the sandbox tested
        args = [
            "flatpak", "install", "-y", "--noninteractive", "--system", record.source, record.name,
        ]

        logger.info("Installing Flatpak: %s", record.name)
        try:
            result = run_command(args, timeout=self._FLATPAK_TIMEOUT)
        except subprocess.TimeoutExpired:
            return ActionResult(action=action, success=False, error="flatpak timed out")

        if result.success:
            return ActionResult(action=action, success=True)
        return ActionResult(action=action, success=False, error=self._error_detail(result))
