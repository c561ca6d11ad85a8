"""Snapshot models.

A Snapshot records everything needed to put the host back the way it
was before a transaction: package-database entries and pre-images of
every path the plan is expected to touch.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class FileImage:
    """Pre-image of one host path.

    Attributes:
        path: Absolute path on the host (relative to the managed root).
        exists: Whether the path existed at checkpoint time.
        sha256: Content hash of the file, None for absent paths and symlinks.
        mode: Permission bits of the file.
        link_target: Target of a symlink, if the path was a symlink.
    """

    path: str
    exists: bool
    sha256: str | None = None
    mode: int | None = None
    link_target: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON storage."""
        return {
            "path": self.path,
            "exists": self.exists,
            "sha256": self.sha256,
            "mode": self.mode,
            "link_target": self.link_target,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FileImage":
        """Deserialize from dictionary."""
        return cls(
            path=data["path"],
            exists=data["exists"],
            sha256=data.get("sha256"),
            mode=data.get("mode"),
            link_target=data.get("link_target"),
        )


@dataclass(frozen=True, slots=True)
class DbEntryImage:
    """Saved package-database state for one package name.

    Attributes:
        name: Package name.
        entries: Names of the database entry directories present at checkpoint
            (``<name>-<version>``); empty when the package was not installed.
    """

    name: str
    entries: tuple[str, ...] = ()

    @property
    def installed(self) -> bool:
        """Check if the package was installed at checkpoint time."""
        return bool(self.entries)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON storage."""
        return {"name": self.name, "entries": list(self.entries)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DbEntryImage":
        """Deserialize from dictionary."""
        return cls(name=data["name"], entries=tuple(data.get("entries", [])))


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Checkpoint of host package state.

    Attributes:
        id: Unique snapshot identifier.
        timestamp: When the checkpoint was taken (ISO 8601).
        packages: Package-database state of affected packages.
        files: Pre-images of affected paths.
        label: Optional description (e.g. the plan it protects).
    """

    id: str
    timestamp: str
    packages: tuple[DbEntryImage, ...] = field(default=())
    files: tuple[FileImage, ...] = field(default=())
    label: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON storage."""
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "packages": [p.to_dict() for p in self.packages],
            "files": [f.to_dict() for f in self.files],
            "label": self.label,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Snapshot":
        """Deserialize from dictionary.

        Raises:
            KeyError: If required fields are missing.
        """
        return cls(
            id=data["id"],
            timestamp=data["timestamp"],
            packages=tuple(DbEntryImage.from_dict(p) for p in data.get("packages", [])),
            files=tuple(FileImage.from_dict(f) for f in data.get("files", [])),
            label=data.get("label"),
        )
