"""Snapshot and rollback manager.

A checkpoint stores, for every path a transaction is expected to touch,
either a content-addressed copy of the file or the fact that it was
absent (together with any parent directories that were absent too),
plus copies of the package-database entries of the affected
packages. Restoring puts exactly those paths and entries back.

Layout under the snapshots directory::

    <id>.json            snapshot metadata
    objects/<sha256>     file contents, shared between snapshots
    db/<id>/<entry>/     package-database entry copies
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import shutil
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from pathlib import Path, PurePosixPath
from tempfile import NamedTemporaryFile

from reap.core.errors import RestoreFailedError, SnapshotInUseError, SnapshotNotFoundError
from reap.models.snapshot import DbEntryImage, FileImage, Snapshot

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "var/lib/pacman/local"


def _sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _tree_digest(root: Path) -> dict[str, str]:
    """Relative path to content hash for every file under ``root``."""
    return {
        str(path.relative_to(root)): _sha256(path)
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


def split_entry_name(entry: str) -> tuple[str, str]:
    """Split a database entry directory name ``<name>-<pkgver>-<pkgrel>``.

    Returns:
        Tuple of (name, version).

    Raises:
        ValueError: If the entry has no version part.
    """
    parts = entry.rsplit("-", 2)
    if len(parts) != 3:
        msg = f"Not a package database entry: {entry}"
        raise ValueError(msg)
    return parts[0], f"{parts[1]}-{parts[2]}"


def _desc_field(text: str, field: str) -> list[str]:
    """Values of one ``%FIELD%`` section of a database ``desc`` file."""
    values: list[str] = []
    lines = iter(text.splitlines())
    for line in lines:
        if line.strip() == f"%{field}%":
            for value in lines:
                if not value.strip():
                    break
                values.append(value.strip())
            break
    return values


class LocalPackageDb:
    """Read access to pacman's local package database."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def entries_for(self, name: str) -> list[str]:
        """Entry directory names belonging to a package."""
        if not self.path.is_dir():
            return []
        entries: list[str] = []
        for entry in self.path.iterdir():
            if not entry.is_dir():
                continue
            try:
                entry_name, _ = split_entry_name(entry.name)
            except ValueError:
                continue
            if entry_name == name:
                entries.append(entry.name)
        return sorted(entries)

    def installed(self) -> dict[str, str]:
        """Installed package name to version mapping."""
        if not self.path.is_dir():
            return {}
        result: dict[str, str] = {}
        for entry in sorted(self.path.iterdir()):
            if not entry.is_dir():
                continue
            try:
                name, version = split_entry_name(entry.name)
            except ValueError:
                continue
            result[name] = version
        return result

    def provides(self) -> dict[str, list[str | None]]:
        """Names installed packages provide through ``%PROVIDES%``.

        Returns:
            Provided name to the versions it is provided at; an
            unversioned provide is recorded as None.
        """
        if not self.path.is_dir():
            return {}
        result: dict[str, list[str | None]] = {}
        for entry in sorted(self.path.iterdir()):
            desc = entry / "desc"
            if not desc.is_file():
                continue
            text = desc.read_text(encoding="utf-8", errors="replace")
            for value in _desc_field(text, "PROVIDES"):
                name, sep, version = value.partition("=")
                result.setdefault(name, []).append(version if sep else None)
        return result


class SnapshotManager:
    """Creates, restores and prunes snapshots of host package state.

    Attributes:
        root: Managed root all snapshot paths are relative to.
        db: Local package database under the managed root.
    """

    def __init__(
        self,
        state_dir: Path,
        root: Path = Path("/"),
        db_path: str = DEFAULT_DB_PATH,
    ) -> None:
        self._dir = state_dir
        self.root = root
        self.db = LocalPackageDb(root / db_path)

    @property
    def objects_dir(self) -> Path:
        """Content-addressed file store."""
        return self._dir / "objects"

    def _db_copy_dir(self, snapshot_id: str) -> Path:
        return self._dir / "db" / snapshot_id

    def _meta_path(self, snapshot_id: str) -> Path:
        return self._dir / f"{snapshot_id}.json"

    def _host(self, path: str) -> Path:
        return self.root / path.lstrip("/")

    def _exists(self, path: str) -> bool:
        host = self._host(path)
        return host.is_symlink() or host.exists()

    # -- checkpoint ----------------------------------------------------------

    def checkpoint(
        self,
        paths: Iterable[str],
        packages: Iterable[str] = (),
        label: str | None = None,
    ) -> Snapshot:
        """Record the current state of paths and package entries.

        Args:
            paths: Absolute paths (relative to the managed root) the
                transaction may touch.
            packages: Package names whose database entries to save.
            label: Optional description.

        Returns:
            The persisted Snapshot.

        Raises:
            OSError: If the snapshot cannot be written.
        """
        snapshot_id = uuid.uuid4().hex[:12]
        self.objects_dir.mkdir(parents=True, exist_ok=True)

        captured: dict[str, FileImage] = {}
        for path in sorted(set(paths)):
            for image in self._capture(path):
                captured.setdefault(image.path, image)
        files = tuple(sorted(captured.values(), key=lambda f: f.path))

        db_copy = self._db_copy_dir(snapshot_id)
        images: list[DbEntryImage] = []
        for name in sorted(set(packages)):
            entries = self.db.entries_for(name)
            for entry in entries:
                shutil.copytree(self.db.path / entry, db_copy / entry, symlinks=True)
            images.append(DbEntryImage(name=name, entries=tuple(entries)))

        snapshot = Snapshot(
            id=snapshot_id,
            timestamp=datetime.now(UTC).isoformat(),
            packages=tuple(images),
            files=files,
            label=label,
        )
        self._write_meta(snapshot)
        logger.info(
            "Checkpoint %s: %d path(s), %d package(s)", snapshot_id, len(files), len(images)
        )
        return snapshot

    def _capture(self, path: str) -> list[FileImage]:
        """Image a path; an absent path also images its absent ancestors."""
        host = self._host(path)
        if host.is_symlink():
            return [FileImage(path=path, exists=True, link_target=os.readlink(host))]
        if host.is_file():
            digest = _sha256(host)
            blob = self.objects_dir / digest
            if not blob.exists():
                shutil.copyfile(host, blob)
            return [
                FileImage(
                    path=path, exists=True, sha256=digest, mode=host.stat().st_mode & 0o7777
                )
            ]
        if host.is_dir():
            return [FileImage(path=path, exists=True, mode=host.stat().st_mode & 0o7777)]

        images = [FileImage(path=path, exists=False)]
        parent = PurePosixPath(path).parent
        while parent != parent.parent and not self._exists(str(parent)):
            images.append(FileImage(path=str(parent), exists=False))
            parent = parent.parent
        return images

    def _write_meta(self, snapshot: Snapshot) -> None:
        path = self._meta_path(snapshot.id)
        path.parent.mkdir(parents=True, exist_ok=True)
        with NamedTemporaryFile(
            mode="w", dir=path.parent, delete=False, suffix=".tmp", encoding="utf-8"
        ) as f:
            json.dump(snapshot.to_dict(), f, indent=2)
            tmp = Path(f.name)
        os.replace(tmp, path)

    # -- restore -------------------------------------------------------------

    def restore(self, snapshot: Snapshot | str) -> None:
        """Put every recorded path and package entry back.

        Restoring is idempotent: items already in their recorded state
        are left alone, so a second restore is a no-op.

        Raises:
            SnapshotNotFoundError: If the snapshot id is unknown.
            RestoreFailedError: If any item could not be restored.
        """
        if isinstance(snapshot, str):
            snapshot = self.get(snapshot)

        failures: list[str] = []
        present = sorted((f for f in snapshot.files if f.exists), key=lambda f: f.path)
        absent = sorted(
            (f for f in snapshot.files if not f.exists), key=lambda f: f.path, reverse=True
        )
        for image in [*present, *absent]:
            try:
                self._restore_file(image)
            except OSError as e:
                failures.append(f"{image.path}: {e}")

        for package in snapshot.packages:
            try:
                self._restore_entries(snapshot.id, package)
            except OSError as e:
                failures.append(f"db entry {package.name}: {e}")

        if failures:
            for failure in failures:
                logger.error("Restore %s: %s", snapshot.id, failure)
            raise RestoreFailedError(snapshot.id, failures)
        logger.info("Restored snapshot %s", snapshot.id)

    def _restore_file(self, image: FileImage) -> None:
        target = self._host(image.path)

        if not image.exists:
            if target.is_symlink() or target.is_file():
                target.unlink()
            elif target.is_dir():
                # Only directories whose recorded contents are already gone
                if any(target.iterdir()):
                    logger.warning("Keeping %s: holds paths outside the snapshot", image.path)
                else:
                    target.rmdir()
            return

        if image.link_target is not None:
            if target.is_symlink() and os.readlink(target) == image.link_target:
                return
            self._remove(target)
            target.parent.mkdir(parents=True, exist_ok=True)
            os.symlink(image.link_target, target)
            return

        if image.sha256 is None:
            if target.is_symlink() or target.is_file():
                target.unlink()
            target.mkdir(parents=True, exist_ok=True)
            if image.mode is not None:
                target.chmod(image.mode)
            return

        if (
            target.is_file()
            and not target.is_symlink()
            and _sha256(target) == image.sha256
            and (image.mode is None or target.stat().st_mode & 0o7777 == image.mode)
        ):
            return

        blob = self.objects_dir / image.sha256
        if not blob.exists():
            msg = f"missing object {image.sha256}"
            raise FileNotFoundError(msg)
        self._remove(target)
        target.parent.mkdir(parents=True, exist_ok=True)
        with NamedTemporaryFile(dir=target.parent, delete=False, prefix=".reap-") as f:
            tmp = Path(f.name)
        try:
            shutil.copyfile(blob, tmp)
            if image.mode is not None:
                tmp.chmod(image.mode)
            os.replace(tmp, target)
        finally:
            if tmp.exists():
                tmp.unlink()

    @staticmethod
    def _remove(target: Path) -> None:
        if target.is_symlink() or target.is_file():
            target.unlink()
        elif target.is_dir():
            shutil.rmtree(target)

    def _restore_entries(self, snapshot_id: str, package: DbEntryImage) -> None:
        saved = self._db_copy_dir(snapshot_id)
        for entry in self.db.entries_for(package.name):
            if entry not in package.entries:
                shutil.rmtree(self.db.path / entry)
        for entry in package.entries:
            source = saved / entry
            dest = self.db.path / entry
            if dest.is_dir() and _tree_digest(dest) == _tree_digest(source):
                continue
            self._remove(dest)
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copytree(source, dest, symlinks=True)

    # -- queries and retention -----------------------------------------------

    def get(self, snapshot_id: str) -> Snapshot:
        """Load a snapshot by id or unique id prefix.

        Raises:
            SnapshotNotFoundError: If no single snapshot matches.
        """
        path = self._meta_path(snapshot_id)
        if not path.exists():
            matches = [s for s in self.list() if s.id.startswith(snapshot_id)]
            if len(matches) != 1:
                raise SnapshotNotFoundError(f"Snapshot not found: {snapshot_id}")
            return matches[0]
        try:
            return Snapshot.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, json.JSONDecodeError, KeyError) as e:
            raise SnapshotNotFoundError(f"Snapshot {snapshot_id} is unreadable: {e}") from e

    def list(self) -> list[Snapshot]:
        """All readable snapshots, newest first."""
        if not self._dir.is_dir():
            return []
        snapshots: list[Snapshot] = []
        for path in self._dir.glob("*.json"):
            try:
                snapshots.append(Snapshot.from_dict(json.loads(path.read_text(encoding="utf-8"))))
            except (OSError, json.JSONDecodeError, KeyError) as e:
                logger.warning("Skipping unreadable snapshot %s: %s", path.name, e)
        return sorted(snapshots, key=lambda s: s.timestamp, reverse=True)

    def latest(self) -> Snapshot | None:
        """Most recent snapshot, if any."""
        snapshots = self.list()
        return snapshots[0] if snapshots else None

    def delete(self, snapshot_id: str, in_use: Iterable[str] = ()) -> None:
        """Delete a snapshot and garbage-collect unreferenced objects.

        Raises:
            SnapshotNotFoundError: If the snapshot does not exist.
            SnapshotInUseError: If an in-flight transaction references it.
        """
        snapshot = self.get(snapshot_id)
        if snapshot.id in set(in_use):
            raise SnapshotInUseError(f"Snapshot {snapshot.id} is bound to an in-flight transaction")
        self._meta_path(snapshot.id).unlink()
        shutil.rmtree(self._db_copy_dir(snapshot.id), ignore_errors=True)
        self._collect_garbage()
        logger.info("Deleted snapshot %s", snapshot.id)

    def prune(
        self,
        keep: int,
        max_age_days: int = 0,
        in_use: Iterable[str] = (),
        now: datetime | None = None,
    ) -> list[str]:
        """Delete old snapshots.

        The newest ``keep`` snapshots are always retained. Older ones are
        deleted once they exceed ``max_age_days`` (immediately when it is 0).
        Snapshots bound to in-flight transactions are never deleted.

        Returns:
            Ids of deleted snapshots.
        """
        busy = set(in_use)
        now = now or datetime.now(UTC)
        cutoff = now - timedelta(days=max_age_days) if max_age_days > 0 else None

        deleted: list[str] = []
        for index, snapshot in enumerate(self.list()):
            if index < keep:
                continue
            if cutoff is not None and datetime.fromisoformat(snapshot.timestamp) >= cutoff:
                continue
            if snapshot.id in busy:
                logger.warning("Keeping snapshot %s: in use", snapshot.id)
                continue
            self._meta_path(snapshot.id).unlink()
            shutil.rmtree(self._db_copy_dir(snapshot.id), ignore_errors=True)
            deleted.append(snapshot.id)

        if deleted:
            self._collect_garbage()
            logger.info("Pruned %d snapshot(s)", len(deleted))
        return deleted

    def _collect_garbage(self) -> None:
        if not self.objects_dir.is_dir():
            return
        referenced = {f.sha256 for s in self.list() for f in s.files if f.sha256}
        for blob in self.objects_dir.iterdir():
            if blob.name not in referenced:
                blob.unlink()
