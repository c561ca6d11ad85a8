"""AUR backend.

Queries the AUR RPC interface over HTTP and fetches build recipes by
cloning the package's Git repository.
"""

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Any

import httpx

from reap.backends.base import OUT_MOUNT, Backend
from reap.backends.pkgbuild import makepkg_steps
from reap.models.record import BackendOrigin, Dependency, FetchedArtifact, PackageRecord
from reap.models.sandbox import SandboxStep
from reap.utils.shell import command_exists, run_command

logger = logging.getLogger(__name__)

AUR_GIT_URL = "https://aur.archlinux.org/{base}.git"


class AurBackend(Backend):
    """Backend for the Arch User Repository.

    Attributes:
        rpc_url: Base URL of the RPC interface (``.../rpc/v5``).
    """

    def __init__(
        self,
        rpc_url: str = "https://aur.archlinux.org/rpc/v5",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.rpc_url = rpc_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @property
    def origin(self) -> BackendOrigin:
        """Return AUR as the origin."""
        return BackendOrigin.AUR

    def is_available(self) -> bool:
        """Check if git is installed for fetching recipes."""
        return command_exists("git")

    def search(self, name: str) -> list[PackageRecord]:
        """Look up a package with the RPC ``info`` endpoint.

        Raises:
            RuntimeError: If the RPC request fails.
        """
        results = self._get("/info", params={"arg[]": name})
        return [self._to_record(item) for item in results if item.get("Name") == name]

    def query(self, term: str) -> list[PackageRecord]:
        """Search names and descriptions with the RPC ``search`` endpoint.

        Raises:
            RuntimeError: If the RPC request fails.
        """
        results = self._get(f"/search/{term}", params={"by": "name-desc"})
        return sorted(
            (self._to_record(item) for item in results),
            key=lambda record: record.name,
        )

    def fetch(self, record: PackageRecord, dest: Path) -> FetchedArtifact:
        """Clone the package's AUR repository into ``dest``.

        Raises:
            RuntimeError: If git is missing or the clone fails.
        """
        if not self.is_available():
            msg = "git is required to fetch AUR packages"
            raise RuntimeError(msg)
        if dest.exists():
            shutil.rmtree(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)

        try:
            result = run_command(
                ["git", "clone", "--depth", "1", record.source, str(dest)],
                timeout=300.0,
            )
        except subprocess.TimeoutExpired as e:
            msg = f"Cloning {record.source} timed out"
            raise RuntimeError(msg) from e
        if not result.success:
            msg = f"git clone {record.source} failed: {result.stderr.strip()}"
            raise RuntimeError(msg)

        self._prepare_dest(dest)
        recipe = dest / "PKGBUILD"
        signature = dest / "PKGBUILD.sig"
        logger.debug("Fetched %s into %s", record.name, dest)
        return FetchedArtifact(
            record=record,
            workdir=dest,
            recipe_path=recipe if recipe.exists() else None,
            signature_path=signature if signature.exists() else None,
        )

    def sandbox_steps(self, artifact: FetchedArtifact) -> list[SandboxStep]:
        """Build with makepkg, then install the result."""
        return makepkg_steps(OUT_MOUNT)

    def _get(self, path: str, params: dict[str, str]) -> list[dict[str, Any]]:
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.get(f"{self.rpc_url}{path}", params=params)
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            msg = f"AUR RPC request failed: {e}"
            raise RuntimeError(msg) from e

        if payload.get("type") == "error":
            msg = f"AUR RPC error: {payload.get('error', 'unknown')}"
            raise RuntimeError(msg)
        results = payload.get("results", [])
        return results if isinstance(results, list) else []

    def _to_record(self, item: dict[str, Any]) -> PackageRecord:
        seen: set[str] = set()
        depends: list[Dependency] = []
        for spec in [*item.get("Depends", []), *item.get("MakeDepends", [])]:
            dep = Dependency.parse(spec)
            if dep.name not in seen:
                seen.add(dep.name)
                depends.append(dep)
        base = item.get("PackageBase") or item["Name"]
        return PackageRecord(
            name=item["Name"],
            version=item["Version"],
            origin=self.origin,
            source=AUR_GIT_URL.format(base=base),
            depends=tuple(depends),
            recipe_ref=f"{AUR_GIT_URL.format(base=base)}#PKGBUILD",
            description=item.get("Description"),
        )
