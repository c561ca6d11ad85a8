"""Filesystem and network tracing for sandbox runs.

The filesystem diff is read from the overlay upper directory: every
regular file or symlink there was written by the run, and overlay
whiteouts (0/0 character devices) mark removals. Network activity is
read from strace ``connect`` logs.
"""

import hashlib
import os
import re
import stat
from collections.abc import Sequence
from pathlib import Path

from reap.models.sandbox import BUILD_MOUNT, FileChange, NetworkEvent

# Paths that are mounted separately and never part of the diff
EXCLUDED_PREFIXES: tuple[str, ...] = ("/build", "/dev", "/proc", "/run", "/sys", "/tmp")

_CONNECT_RE = re.compile(
    r"^(?:\d+\s+)?(?P<time>\d{2}:\d{2}:\d{2}(?:\.\d+)?)\s+connect\(\d+,\s*\{(?P<addr>[^}]*)\}"
)
_PORT_RE = re.compile(r"sin6?_port=htons\((?P<port>\d+)\)")
_INET_RE = re.compile(r'inet_addr\("(?P<host>[^"]+)"\)')
_INET6_RE = re.compile(r'inet_pton\(AF_INET6,\s*"(?P<host>[^"]+)"')
_UNIX_RE = re.compile(r'sun_path="(?P<path>[^"]*)"')


def wrap_with_strace(argv: Sequence[str], step: str, trace_dir: str = BUILD_MOUNT) -> list[str]:
    """Prefix a command with strace logging connect() calls.

    Args:
        argv: Command to trace.
        step: Step name used for the log file.
        trace_dir: Directory (as seen by the traced process) containing ``.trace``.
    """
    log = f"{trace_dir}/.trace/{step}.log"
    return ["strace", "-f", "-qq", "-tt", "-e", "trace=connect", "-o", log, *argv]


def _sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _excluded(path: str) -> bool:
    return any(path == prefix or path.startswith(prefix + "/") for prefix in EXCLUDED_PREFIXES)


def _is_whiteout(st: os.stat_result) -> bool:
    return stat.S_ISCHR(st.st_mode) and st.st_rdev == 0


def diff_overlay(upper: Path, base: Path) -> list[FileChange]:
    """Compare an overlay upper directory against its lower base.

    Returns:
        Changes sorted by path; directories themselves are not reported.
    """
    changes: list[FileChange] = []
    for dirpath, dirnames, filenames in os.walk(upper):
        current = Path(dirpath)
        rel = current.relative_to(upper)
        rel_dir = "/" if rel == Path(".") else f"/{rel.as_posix()}"
        if _excluded(rel_dir):
            dirnames.clear()
            continue
        # Symlinked directories show up in dirnames; treat them as entries
        entries = list(filenames) + [d for d in dirnames if (current / d).is_symlink()]
        for name in sorted(entries):
            host = current / name
            path = f"{rel_dir.rstrip('/')}/{name}"
            if _excluded(path):
                continue
            st = host.lstat()
            lower = base / path.lstrip("/")
            if _is_whiteout(st):
                changes.append(FileChange(path=path, kind="removed"))
            elif stat.S_ISLNK(st.st_mode):
                kind = "modified" if lower.is_symlink() or lower.exists() else "added"
                changes.append(FileChange(path=path, kind=kind))
            elif stat.S_ISREG(st.st_mode):
                digest = _sha256(host)
                if lower.is_file() and not lower.is_symlink():
                    if _sha256(lower) == digest:
                        # Copied up for a metadata change only
                        continue
                    changes.append(FileChange(path=path, kind="modified", sha256=digest))
                else:
                    changes.append(FileChange(path=path, kind="added", sha256=digest))
    return sorted(changes, key=lambda c: c.path)


def parse_strace(text: str) -> list[NetworkEvent]:
    """Extract connect() attempts from strace output."""
    events: list[NetworkEvent] = []
    for line in text.splitlines():
        match = _CONNECT_RE.match(line.strip())
        if match is None:
            continue
        addr = match.group("addr")
        if unix := _UNIX_RE.search(addr):
            endpoint = unix.group("path")
        else:
            host_match = _INET_RE.search(addr) or _INET6_RE.search(addr)
            port_match = _PORT_RE.search(addr)
            if host_match is None:
                continue
            host = host_match.group("host")
            if ":" in host:
                host = f"[{host}]"
            endpoint = f"{host}:{port_match.group('port')}" if port_match else host
        events.append(
            NetworkEvent(endpoint=endpoint, direction="outbound", timestamp=match.group("time"))
        )
    return events


def collect_network(trace_dir: Path) -> list[NetworkEvent]:
    """Parse every strace log in a trace directory, in step-name order."""
    if not trace_dir.is_dir():
        return []
    events: list[NetworkEvent] = []
    for log in sorted(trace_dir.glob("*.log")):
        events.extend(parse_strace(log.read_text(encoding="utf-8", errors="replace")))
    return events
