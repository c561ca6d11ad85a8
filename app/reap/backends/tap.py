"""Git tap backend.

A tap is a Git repository of PKGBUILD directories cloned under the taps
directory. Each ``<tap>/<package>/PKGBUILD`` is one package; an optional
``PKGBUILD.sig`` next to it is the detached signature.
"""

import logging
import shutil
from pathlib import Path

from reap.backends.base import OUT_MOUNT, Backend
from reap.backends.pkgbuild import makepkg_steps, parse_pkgbuild
from reap.models.record import BackendOrigin, FetchedArtifact, PackageRecord
from reap.models.sandbox import SandboxStep

logger = logging.getLogger(__name__)


class TapBackend(Backend):
    """Backend reading PKGBUILDs from locally cloned Git taps.

    Attributes:
        taps_dir: Directory holding one subdirectory per tap.
    """

    def __init__(self, taps_dir: Path) -> None:
        self.taps_dir = taps_dir

    @property
    def origin(self) -> BackendOrigin:
        """Return TAP as the origin."""
        return BackendOrigin.TAP

    def is_available(self) -> bool:
        """Check if the taps directory exists."""
        return self.taps_dir.is_dir()

    def taps(self) -> list[Path]:
        """Tap directories, sorted by name."""
        if not self.is_available():
            return []
        return sorted(
            p for p in self.taps_dir.iterdir() if p.is_dir() and not p.name.startswith(".")
        )

    def search(self, name: str) -> list[PackageRecord]:
        """Find ``<tap>/<name>/PKGBUILD`` in every tap."""
        records: list[PackageRecord] = []
        for tap in self.taps():
            recipe = tap / name / "PKGBUILD"
            if recipe.is_file():
                record = self._load(tap, recipe)
                if record is not None and record.name == name:
                    records.append(record)
        return records

    def query(self, term: str) -> list[PackageRecord]:
        """Find packages whose name or description contains ``term``."""
        needle = term.lower()
        records: list[PackageRecord] = []
        for tap in self.taps():
            for recipe in sorted(tap.glob("*/PKGBUILD")):
                record = self._load(tap, recipe)
                if record is None:
                    continue
                if needle in record.name.lower() or needle in (record.description or "").lower():
                    records.append(record)
        return records

    def fetch(self, record: PackageRecord, dest: Path) -> FetchedArtifact:
        """Copy the package directory out of the tap.

        Raises:
            RuntimeError: If the package directory is gone.
        """
        source = Path(record.source)
        if not source.is_dir():
            msg = f"Tap package directory missing: {source}"
            raise RuntimeError(msg)
        if dest.exists():
            shutil.rmtree(dest)
        shutil.copytree(source, dest, ignore=shutil.ignore_patterns(".git"))
        self._prepare_dest(dest)
        signature = dest / "PKGBUILD.sig"
        return FetchedArtifact(
            record=record,
            workdir=dest,
            recipe_path=dest / "PKGBUILD",
            signature_path=signature if signature.exists() else None,
        )

    def sandbox_steps(self, artifact: FetchedArtifact) -> list[SandboxStep]:
        """Build with makepkg, then install the result."""
        return makepkg_steps(OUT_MOUNT)

    def _load(self, tap: Path, recipe: Path) -> PackageRecord | None:
        try:
            meta = parse_pkgbuild(recipe.read_text(encoding="utf-8", errors="replace"))
        except (OSError, ValueError) as e:
            logger.warning("Skipping unreadable recipe %s: %s", recipe, e)
            return None
        signature = recipe.with_name("PKGBUILD.sig")
        return PackageRecord(
            name=meta.pkgname,
            version=meta.version,
            origin=self.origin,
            source=str(recipe.parent),
            depends=meta.depends,
            signature_ref=str(signature) if signature.exists() else None,
            recipe_ref=str(recipe),
            description=meta.pkgdesc,
            tap=tap.name,
        )
