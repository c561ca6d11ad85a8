"""Package record models.

This module defines the normalized record every backend produces,
dependency specifications with version constraints, and the local
artifact a backend fetch yields.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from reap.utils.version import vercmp


class BackendOrigin(str, Enum):
    """Enumeration of supported package backends."""

    PACMAN = "pacman"
    AUR = "aur"
    CHAOTIC = "chaotic"
    FLATPAK = "flatpak"
    TAP = "tap"

    @property
    def label(self) -> str:
        """Return the bracketed display label."""
        return _LABELS[self]

    @property
    def builds_from_recipe(self) -> bool:
        """Check if packages from this backend are built from a recipe."""
        return self in (BackendOrigin.AUR, BackendOrigin.TAP)


_LABELS = {
    BackendOrigin.PACMAN: "[PACMAN]",
    BackendOrigin.AUR: "[AUR]",
    BackendOrigin.CHAOTIC: "[CHAOTIC-AUR]",
    BackendOrigin.FLATPAK: "[FLATPAK]",
    BackendOrigin.TAP: "[TAP]",
}

# name, optional operator, optional version
_DEP_RE = re.compile(r"^(?P<name>[^<>=\s]+)\s*(?:(?P<op><=|>=|=|<|>)\s*(?P<version>\S+))?$")


@dataclass(frozen=True, slots=True)
class Dependency:
    """A declared dependency with an optional version constraint.

    Attributes:
        name: Name of the required package.
        op: Comparison operator ('=', '<', '<=', '>', '>=') or None.
        version: Version the operator compares against, or None.
    """

    name: str
    op: str | None = None
    version: str | None = None

    def __post_init__(self) -> None:
        """Validate dependency data after initialization."""
        if not self.name:
            msg = "Dependency name cannot be empty"
            raise ValueError(msg)
        if (self.op is None) != (self.version is None):
            msg = f"Dependency {self.name} needs both operator and version"
            raise ValueError(msg)

    @classmethod
    def parse(cls, spec: str) -> "Dependency":
        """Parse a pacman-style dependency string such as ``glibc>=2.38``.

        Raises:
            ValueError: If the string is not a valid dependency spec.
        """
        match = _DEP_RE.match(spec.strip())
        if match is None:
            msg = f"Invalid dependency spec: {spec!r}"
            raise ValueError(msg)
        return cls(
            name=match.group("name"),
            op=match.group("op"),
            version=match.group("version"),
        )

    def satisfied_by(self, version: str) -> bool:
        """Check if a concrete version satisfies this constraint."""
        if self.op is None or self.version is None:
            return True
        result = vercmp(version, self.version)
        return {
            "=": result == 0,
            "<": result < 0,
            "<=": result <= 0,
            ">": result > 0,
            ">=": result >= 0,
        }[self.op]

    def __str__(self) -> str:
        if self.op is None:
            return self.name
        return f"{self.name}{self.op}{self.version}"


@dataclass(frozen=True, slots=True)
class PackageRecord:
    """Normalized, immutable description of one installable package.

    Attributes:
        name: Package name.
        version: Full version string (``[epoch:]pkgver-pkgrel`` for Arch packages).
        origin: Backend that reported this record.
        source: URI or local path the package is fetched from.
        depends: Declared runtime and build dependencies.
        signature_ref: URI or path of the detached signature, if any.
        recipe_ref: URI or path of the build recipe, if the package is built.
        checksum: Expected sha256 of the source archive, if known.
        description: Human-readable summary.
        tap: Name of the Git tap for tap records.
    """

    name: str
    version: str
    origin: BackendOrigin
    source: str
    depends: tuple[Dependency, ...] = field(default=())
    signature_ref: str | None = None
    recipe_ref: str | None = None
    checksum: str | None = None
    description: str | None = None
    tap: str | None = None

    def __post_init__(self) -> None:
        """Validate record data after initialization."""
        if not self.name:
            msg = "Package name cannot be empty"
            raise ValueError(msg)
        if not self.version:
            msg = "Package version cannot be empty"
            raise ValueError(msg)

    @property
    def identity(self) -> tuple[str, BackendOrigin, str]:
        """Return the (name, origin, version) identity."""
        return self.name, self.origin, self.version

    @property
    def key(self) -> str:
        """Return the ``origin:name`` key used for plan nodes."""
        return f"{self.origin.value}:{self.name}"

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON storage."""
        result: dict[str, Any] = {
            "name": self.name,
            "version": self.version,
            "origin": self.origin.value,
            "source": self.source,
            "depends": [str(dep) for dep in self.depends],
        }
        for attr in ("signature_ref", "recipe_ref", "checksum", "description", "tap"):
            value = getattr(self, attr)
            if value is not None:
                result[attr] = value
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PackageRecord":
        """Deserialize from dictionary.

        Raises:
            KeyError: If required fields are missing.
            ValueError: If origin or dependency data is invalid.
        """
        return cls(
            name=data["name"],
            version=data["version"],
            origin=BackendOrigin(data["origin"]),
            source=data["source"],
            depends=tuple(Dependency.parse(d) for d in data.get("depends", [])),
            signature_ref=data.get("signature_ref"),
            recipe_ref=data.get("recipe_ref"),
            checksum=data.get("checksum"),
            description=data.get("description"),
            tap=data.get("tap"),
        )


@dataclass(frozen=True, slots=True)
class FetchedArtifact:
    """Local files produced by fetching a package record.

    Attributes:
        record: The record that was fetched.
        workdir: Directory holding fetched files and, later, build outputs.
        recipe_path: Path to the build recipe (PKGBUILD), if any.
        signature_path: Path to the detached signature, if any.
        payloads: Prebuilt package files or bundle references to install.
    """

    record: PackageRecord
    workdir: Path
    recipe_path: Path | None = None
    signature_path: Path | None = None
    payloads: tuple[Path, ...] = ()

    @property
    def signed_path(self) -> Path | None:
        """Return the file the detached signature covers."""
        if self.recipe_path is not None:
            return self.recipe_path
        return self.payloads[0] if self.payloads else None

    def recipe_text(self) -> str | None:
        """Read the recipe content, or None when the package has no recipe."""
        if self.recipe_path is None or not self.recipe_path.exists():
            return None
        return self.recipe_path.read_text(encoding="utf-8", errors="replace")

    def built_packages(self) -> list[Path]:
        """List package files collected from the sandbox build."""
        out_dir = self.workdir / "out"
        if not out_dir.is_dir():
            return []
        return sorted(p for p in out_dir.iterdir() if ".pkg.tar" in p.name)
