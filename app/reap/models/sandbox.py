"""Sandbox run models.

A SandboxRun captures everything observed while building and
test-installing one package inside an ephemeral environment.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from reap.models.record import PackageRecord


class SandboxKind(str, Enum):
    """Supported sandbox backends."""

    BUBBLEWRAP = "bubblewrap"
    NSPAWN = "nspawn"
    FIREJAIL = "firejail"
    LXC = "lxc"


class RunStatus(str, Enum):
    """How a sandbox run ended."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


ChangeKind = Literal["added", "removed", "modified"]

# Mount point of the artifact working directory inside every sandbox
BUILD_MOUNT = "/build"


@dataclass(frozen=True, slots=True)
class SandboxStep:
    """One command executed inside the sandbox.

    Attributes:
        name: Step name ('build', 'install', ...).
        argv: Command line, with paths relative to the sandbox root.
    """

    name: str
    argv: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class FileChange:
    """A path that differs from the clean base image.

    Attributes:
        path: Absolute path inside the sandbox root.
        kind: Whether the path was added, removed or modified.
        sha256: Content hash after the run (None for removals and directories).
    """

    path: str
    kind: ChangeKind
    sha256: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON storage."""
        return {"path": self.path, "kind": self.kind, "sha256": self.sha256}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FileChange":
        """Deserialize from dictionary."""
        return cls(path=data["path"], kind=data["kind"], sha256=data.get("sha256"))


@dataclass(frozen=True, slots=True)
class NetworkEvent:
    """A network connection attempt observed during the run.

    Attributes:
        endpoint: ``host:port`` or socket path.
        direction: Connection direction ('outbound' or 'inbound').
        timestamp: ISO 8601 timestamp or trace-relative time.
    """

    endpoint: str
    direction: str
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON storage."""
        return {"endpoint": self.endpoint, "direction": self.direction, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NetworkEvent":
        """Deserialize from dictionary."""
        return cls(
            endpoint=data["endpoint"],
            direction=data["direction"],
            timestamp=data["timestamp"],
        )


@dataclass(frozen=True, slots=True)
class SandboxRun:
    """Observations from one build-then-install cycle in a sandbox.

    Attributes:
        id: Unique run identifier.
        record: The package that was built and test-installed.
        backend: Sandbox backend used.
        status: How the run ended.
        exit_code: Exit status of the last executed step.
        duration: Wall-clock seconds from provision to teardown.
        changes: Filesystem diff against the clean base.
        network: Network connection attempts.
        started: ISO 8601 start timestamp.
        failed_step: Name of the step that failed, if any.
        log_path: Captured output of all steps.
    """

    id: str
    record: PackageRecord
    backend: SandboxKind
    status: RunStatus
    exit_code: int
    duration: float
    changes: tuple[FileChange, ...] = field(default=())
    network: tuple[NetworkEvent, ...] = field(default=())
    started: str = ""
    failed_step: str | None = None
    log_path: str | None = None

    @property
    def succeeded(self) -> bool:
        """Check if the run completed successfully."""
        return self.status == RunStatus.SUCCEEDED

    @property
    def failed(self) -> bool:
        """Check if the run did not complete successfully."""
        return not self.succeeded

    @property
    def touched_paths(self) -> list[str]:
        """Paths the real install is expected to touch, sorted."""
        return sorted({change.path for change in self.changes})

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON storage."""
        return {
            "id": self.id,
            "record": self.record.to_dict(),
            "backend": self.backend.value,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "duration": self.duration,
            "changes": [c.to_dict() for c in self.changes],
            "network": [n.to_dict() for n in self.network],
            "started": self.started,
            "failed_step": self.failed_step,
            "log_path": self.log_path,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SandboxRun":
        """Deserialize from dictionary.

        Raises:
            KeyError: If required fields are missing.
            ValueError: If enum values are invalid.
        """
        return cls(
            id=data["id"],
            record=PackageRecord.from_dict(data["record"]),
            backend=SandboxKind(data["backend"]),
            status=RunStatus(data["status"]),
            exit_code=data["exit_code"],
            duration=data["duration"],
            changes=tuple(FileChange.from_dict(c) for c in data.get("changes", [])),
            network=tuple(NetworkEvent.from_dict(n) for n in data.get("network", [])),
            started=data.get("started", ""),
            failed_step=data.get("failed_step"),
            log_path=data.get("log_path"),
        )
