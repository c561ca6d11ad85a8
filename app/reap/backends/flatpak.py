"""Flatpak backend.

Searches configured remotes with the flatpak CLI. Flatpak applications
have no recipe and are already sandboxed at runtime, but still go through
a sandboxed test install like every other package.
"""

import logging
import subprocess
from pathlib import Path

from reap.backends.base import Backend
from reap.models.record import BackendOrigin, FetchedArtifact, PackageRecord
from reap.models.sandbox import SandboxStep
from reap.utils.shell import command_exists, run_command

logger = logging.getLogger(__name__)


class FlatpakBackend(Backend):
    """Backend for Flatpak applications.

    Records use the application ID as name and ``<remote>`` as source.
    """

    _COLUMNS = "--columns=application,version,branch,remotes,description"

    def __init__(self, timeout: float = 30.0) -> None:
        self._timeout = timeout

    @property
    def origin(self) -> BackendOrigin:
        """Return FLATPAK as the origin."""
        return BackendOrigin.FLATPAK

    def is_available(self) -> bool:
        """Check if flatpak CLI is available."""
        return command_exists("flatpak")

    def search(self, name: str) -> list[PackageRecord]:
        """Find applications whose ID equals ``name``.

        Raises:
            RuntimeError: If flatpak is unavailable or fails.
        """
        return [record for record in self.query(name) if record.name == name]

    def query(self, term: str) -> list[PackageRecord]:
        """Search all remotes for ``term``.

        Raises:
            RuntimeError: If flatpak is unavailable or fails.
        """
        if not self.is_available():
            msg = "Flatpak is not available on this system"
            raise RuntimeError(msg)
        try:
            result = run_command(["flatpak", "search", self._COLUMNS, term], timeout=self._timeout)
        except subprocess.TimeoutExpired as e:
            msg = "flatpak search timed out"
            raise RuntimeError(msg) from e
        if not result.success:
            msg = f"flatpak search failed: {result.stderr.strip()}"
            raise RuntimeError(msg)

        records: list[PackageRecord] = []
        for line in result.stdout.splitlines():
            record = self._parse_search_line(line)
            if record is not None:
                records.append(record)
        return records

    def fetch(self, record: PackageRecord, dest: Path) -> FetchedArtifact:
        """Prepare a working directory; the bundle is pulled inside the sandbox."""
        self._prepare_dest(dest)
        return FetchedArtifact(record=record, workdir=dest)

    def sandbox_steps(self, artifact: FetchedArtifact) -> list[SandboxStep]:
        """Install the application from its remote."""
        record = artifact.record
        return [
            SandboxStep(
                name="install",
                argv=(
                    "flatpak", "install", "--system", "--noninteractive", "-y",
                    record.source, record.name,
                ),
            )
        ]

    def _parse_search_line(self, line: str) -> PackageRecord | None:
        """Parse one tab-separated line of ``flatpak search`` output."""
        parts = [part.strip() for part in line.split("\t")]
        if len(parts) < 4 or not parts[0] or parts[0] == "Application ID":
            return None
        app_id, version, branch, remotes = parts[:4]
        description = parts[4] if len(parts) > 4 and parts[4] else None
        return PackageRecord(
            name=app_id,
            version=version or branch or "unknown",
            origin=self.origin,
            # First remote wins when an app is published on several
            source=remotes.split(",")[0],
            description=description,
        )
