"""Minimal PKGBUILD metadata reader.

Extracts the variables reap needs for records (pkgname, version parts,
dependencies, description) without sourcing the file in a shell.
"""

import re
from dataclasses import dataclass

from reap.models.record import Dependency
from reap.models.sandbox import SandboxStep

_SCALAR_RE = re.compile(r"^(?P<key>pkgname|pkgver|pkgrel|epoch|pkgdesc)=(?P<value>.*)$")
_ARRAY_START_RE = re.compile(r"^(?P<key>depends|makedepends)=\((?P<rest>.*)$")


@dataclass(frozen=True, slots=True)
class PkgbuildInfo:
    """Metadata read from a PKGBUILD."""

    pkgname: str
    version: str
    pkgdesc: str | None
    depends: tuple[Dependency, ...]


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        return value[1:-1]
    return value


def _split_array(body: str) -> list[str]:
    items: list[str] = []
    for token in re.findall(r"'[^']*'|\"[^\"]*\"|[^\s]+", body):
        item = _unquote(token)
        if item and not item.startswith("#"):
            items.append(item)
    return items


def parse_pkgbuild(text: str) -> PkgbuildInfo:
    """Parse top-level PKGBUILD assignments.

    Returns:
        PkgbuildInfo with the version as ``[epoch:]pkgver-pkgrel`` and
        runtime plus make dependencies merged.

    Raises:
        ValueError: If pkgname or pkgver is missing.
    """
    scalars: dict[str, str] = {}
    arrays: dict[str, list[str]] = {"depends": [], "makedepends": []}

    lines = iter(text.splitlines())
    for raw in lines:
        line = raw.strip()
        if match := _SCALAR_RE.match(line):
            scalars[match.group("key")] = _unquote(match.group("value").split(" #")[0])
            continue
        if match := _ARRAY_START_RE.match(line):
            body = match.group("rest")
            # Arrays may span several lines until the closing paren
            while ")" not in body:
                nxt = next(lines, None)
                if nxt is None:
                    break
                body += " " + nxt.strip()
            arrays[match.group("key")].extend(_split_array(body.split(")", 1)[0]))

    if "pkgname" not in scalars or "pkgver" not in scalars:
        msg = "PKGBUILD is missing pkgname or pkgver"
        raise ValueError(msg)

    version = f"{scalars['pkgver']}-{scalars.get('pkgrel', '1')}"
    if scalars.get("epoch"):
        version = f"{scalars['epoch']}:{version}"

    seen: set[str] = set()
    depends: list[Dependency] = []
    for spec in arrays["depends"] + arrays["makedepends"]:
        dep = Dependency.parse(spec)
        if dep.name not in seen:
            seen.add(dep.name)
            depends.append(dep)

    return PkgbuildInfo(
        pkgname=scalars["pkgname"],
        version=version,
        pkgdesc=scalars.get("pkgdesc"),
        depends=tuple(depends),
    )


def makepkg_steps(out_mount: str) -> list[SandboxStep]:
    """Sandbox steps that build a PKGBUILD in /build and install the result."""
    return [
        SandboxStep(
            name="build",
            argv=("env", f"PKGDEST={out_mount}", "makepkg", "--syncdeps", "--noconfirm"),
        ),
        SandboxStep(
            name="install",
            argv=("sh", "-c", f"pacman -U --noconfirm {out_mount}/*.pkg.tar.*"),
        ),
    ]
