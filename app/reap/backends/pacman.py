"""Pacman repository backend.

Looks up packages in the sync databases with ``pacman -Si`` and
``pacman -Ss``. Repository packages are prebuilt; the sandbox only
downloads and test-installs them.
"""

import logging
import re
import subprocess
from pathlib import Path

from reap.backends.base import OUT_MOUNT, Backend
from reap.models.record import BackendOrigin, Dependency, FetchedArtifact, PackageRecord
from reap.models.sandbox import SandboxStep
from reap.utils.shell import CommandResult, command_exists, run_command

logger = logging.getLogger(__name__)

# "extra/ripgrep 14.1.0-1 [installed]"
_SS_HEADER_RE = re.compile(r"^(?P<repo>[^/\s]+)/(?P<name>\S+)\s+(?P<version>\S+)")


def parse_si_output(output: str) -> list[dict[str, str]]:
    """Split ``pacman -Si`` output into one field mapping per package."""
    blocks: list[dict[str, str]] = []
    current: dict[str, str] = {}
    last_key: str | None = None
    for line in output.splitlines():
        if not line.strip():
            if current:
                blocks.append(current)
            current, last_key = {}, None
            continue
        if " : " in line and not line.startswith(" "):
            key, _, value = line.partition(" : ")
            last_key = key.strip()
            current[last_key] = value.strip()
        elif last_key is not None:
            # Continuation lines of wrapped fields
            current[last_key] += " " + line.strip()
    if current:
        blocks.append(current)
    return blocks


class PacmanBackend(Backend):
    """Backend for official pacman repositories.

    Attributes:
        repos: Repositories whose packages this backend reports. Packages
            from other repositories are left to other backends.
    """

    DEFAULT_REPOS: tuple[str, ...] = ("core", "extra", "multilib")

    def __init__(self, repos: tuple[str, ...] | None = None, timeout: float = 30.0) -> None:
        self.repos = repos if repos is not None else self.DEFAULT_REPOS
        self._timeout = timeout

    @property
    def origin(self) -> BackendOrigin:
        """Return PACMAN as the origin."""
        return BackendOrigin.PACMAN

    def is_available(self) -> bool:
        """Check if pacman is installed."""
        return command_exists("pacman")

    def search(self, name: str) -> list[PackageRecord]:
        """Look up a package in the sync databases.

        Raises:
            RuntimeError: If pacman is unavailable or fails unexpectedly.
        """
        self._require()
        targets = [f"{repo}/{name}" for repo in self.repos]
        result = self._run(["pacman", "-Si", *targets])
        # pacman exits 1 when any target is missing but still prints the rest
        if not result.success and not result.stdout.strip():
            if "not found" in result.stderr:
                return []
            msg = f"pacman -Si failed: {result.stderr.strip()}"
            raise RuntimeError(msg)
        return [self._to_record(block) for block in parse_si_output(result.stdout)]

    def query(self, term: str) -> list[PackageRecord]:
        """Search names and descriptions with ``pacman -Ss``.

        Raises:
            RuntimeError: If pacman is unavailable.
        """
        self._require()
        result = self._run(["pacman", "-Ss", term])
        records: list[PackageRecord] = []
        lines = result.stdout.splitlines()
        for index, line in enumerate(lines):
            match = _SS_HEADER_RE.match(line)
            if match is None or match.group("repo") not in self.repos:
                continue
            description = None
            if index + 1 < len(lines) and lines[index + 1].startswith(" "):
                description = lines[index + 1].strip()
            records.append(
                PackageRecord(
                    name=match.group("name"),
                    version=match.group("version"),
                    origin=self.origin,
                    source=f"{match.group('repo')}/{match.group('name')}",
                    description=description,
                )
            )
        return records

    def fetch(self, record: PackageRecord, dest: Path) -> FetchedArtifact:
        """Prepare a working directory; downloads happen inside the sandbox."""
        self._prepare_dest(dest)
        return FetchedArtifact(record=record, workdir=dest)

    def sandbox_steps(self, artifact: FetchedArtifact) -> list[SandboxStep]:
        """Download the package into /build/out and install it."""
        return [
            SandboxStep(
                name="download",
                argv=(
                    "pacman", "-Swdd", "--noconfirm", "--cachedir", OUT_MOUNT,
                    artifact.record.source,
                ),
            ),
            SandboxStep(
                name="install",
                argv=("sh", "-c", f"pacman -U --noconfirm {OUT_MOUNT}/*.pkg.tar.*"),
            ),
        ]

    def _require(self) -> None:
        if not self.is_available():
            msg = "pacman is not available on this system"
            raise RuntimeError(msg)

    def _run(self, args: list[str]) -> CommandResult:
        try:
            return run_command(args, timeout=self._timeout)
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            msg = f"{args[0]} failed: {e}"
            raise RuntimeError(msg) from e

    def _to_record(self, block: dict[str, str]) -> PackageRecord:
        depends_raw = block.get("Depends On", "None")
        depends = (
            ()
            if depends_raw == "None"
            else tuple(Dependency.parse(spec) for spec in depends_raw.split())
        )
        repo = block.get("Repository", self.repos[0])
        return PackageRecord(
            name=block["Name"],
            version=block["Version"],
            origin=self.origin,
            source=f"{repo}/{block['Name']}",
            depends=depends,
            description=block.get("Description"),
        )
