"""Abstract base class for package backends.

This module defines the Backend interface that every package source
(pacman repos, AUR, Chaotic-AUR, Flatpak, Git taps) implements.
"""

from abc import ABC, abstractmethod
from pathlib import Path

from reap.models.record import BackendOrigin, FetchedArtifact, PackageRecord
from reap.models.sandbox import BUILD_MOUNT, SandboxStep

# Sandbox-side directory receiving built or downloaded package files
OUT_MOUNT = f"{BUILD_MOUNT}/out"


class Backend(ABC):
    """Abstract base class for all package backends.

    Backends answer lookups with normalized PackageRecords, fetch the
    files needed to build or install a record, and describe the steps
    that build and install it inside a sandbox.

    Example:
        >>> backend = PacmanBackend()
        >>> if backend.is_available():
        ...     for record in backend.search("ripgrep"):
        ...         print(record.name, record.version)
    """

    @property
    @abstractmethod
    def origin(self) -> BackendOrigin:
        """Return the origin this backend reports records as."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this backend can be queried on the system."""

    @abstractmethod
    def search(self, name: str) -> list[PackageRecord]:
        """Look up records whose name is exactly ``name``.

        Returns:
            Matching records; empty if the backend doesn't provide it.

        Raises:
            RuntimeError: If the backend cannot be queried.
        """

    @abstractmethod
    def fetch(self, record: PackageRecord, dest: Path) -> FetchedArtifact:
        """Fetch recipe, signature and payloads for a record into ``dest``.

        Raises:
            RuntimeError: If fetching fails.
        """

    @abstractmethod
    def sandbox_steps(self, artifact: FetchedArtifact) -> list[SandboxStep]:
        """Commands that build and test-install the artifact in a sandbox.

        Steps see the artifact working directory at ``/build`` and must
        leave installable package files in ``/build/out``.
        """

    def query(self, term: str) -> list[PackageRecord]:
        """Free-text search. Defaults to an exact-name lookup."""
        return self.search(term)

    @staticmethod
    def _prepare_dest(dest: Path) -> Path:
        """Create the artifact directory and its output subdirectory."""
        (dest / "out").mkdir(parents=True, exist_ok=True)
        return dest
