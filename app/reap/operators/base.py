"""Abstract base class for host package operators.

Operators perform the real-system install of a package that has already
been built and test-installed in a sandbox.
"""

from abc import ABC, abstractmethod

from reap.models.action import ActionResult
from reap.models.record import BackendOrigin, FetchedArtifact
from reap.utils.shell import CommandResult


class Operator(ABC):
    """Abstract base class for all host operators.

    Example:
        >>> operator = PacmanOperator()
        >>> if operator.is_available():
        ...     result = operator.install(artifact)
        ...     print(result.success)
    """

    @property
    @abstractmethod
    def origins(self) -> frozenset[BackendOrigin]:
        """Return the origins whose packages this operator installs."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the host package manager is available."""

    @abstractmethod
    def install(self, artifact: FetchedArtifact) -> ActionResult:
        """Install a vetted artifact on the host.

        Returns:
            ActionResult describing the outcome.

        Raises:
            RuntimeError: If the package manager is not available.
        """

    def handles(self, origin: BackendOrigin) -> bool:
        """Check if this operator installs packages from an origin."""
        return origin in self.origins

    @staticmethod
    def _error_detail(result: CommandResult) -> str:
        """Best-effort error text from a failed command."""
        if result.timed_out:
            return "timed out"
        return result.stderr.strip() or result.stdout.strip() or f"exit status {result.returncode}"
