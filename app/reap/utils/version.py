"""Arch Linux version comparison.

Implements the ``vercmp`` ordering used by pacman: versions are split
into ``[epoch:]pkgver[-pkgrel]`` and segments are compared numerically
or alphabetically, with numeric segments ranking above alphabetic ones.
"""

import string

_DIGITS = frozenset(string.digits)
_ALPHA = frozenset(string.ascii_letters)
_ALNUM = _DIGITS | _ALPHA


def _split_evr(version: str) -> tuple[str, str, str | None]:
    """Split a full version string into (epoch, pkgver, pkgrel)."""
    epoch = "0"
    rest = version
    head, sep, tail = version.partition(":")
    if sep and head.isdigit():
        epoch = head
        rest = tail
    elif sep and not head:
        rest = tail

    pkgver, sep, pkgrel = rest.rpartition("-")
    if not sep:
        return epoch, rest, None
    return epoch, pkgver, pkgrel


def _segment(value: str, start: int, numeric: bool) -> int:
    """Return the end index of the digit or letter run beginning at start."""
    charset = _DIGITS if numeric else _ALPHA
    end = start
    while end < len(value) and value[end] in charset:
        end += 1
    return end


def rpmvercmp(a: str, b: str) -> int:
    """Compare two version segments the way rpm/pacman do.

    Returns:
        -1 if a < b, 0 if equal, 1 if a > b.
    """
    if a == b:
        return 0

    i = j = 0
    while i < len(a) and j < len(b):
        sep_a = i
        while i < len(a) and a[i] not in _ALNUM:
            i += 1
        sep_b = j
        while j < len(b) and b[j] not in _ALNUM:
            j += 1

        if i >= len(a) or j >= len(b):
            break

        # More separators means a newer version component
        if (i - sep_a) != (j - sep_b):
            return -1 if (i - sep_a) < (j - sep_b) else 1

        numeric = a[i] in _DIGITS
        end_a = _segment(a, i, numeric)
        end_b = _segment(b, j, numeric)
        seg_a = a[i:end_a]
        seg_b = b[j:end_b]

        if not seg_b:
            # Segment types differ: numeric always wins over alpha
            return 1 if numeric else -1

        if numeric:
            seg_a = seg_a.lstrip("0")
            seg_b = seg_b.lstrip("0")
            if len(seg_a) != len(seg_b):
                return 1 if len(seg_a) > len(seg_b) else -1

        if seg_a != seg_b:
            return 1 if seg_a > seg_b else -1

        i = end_a
        j = end_b

    if i >= len(a) and j >= len(b):
        return 0

    if (i >= len(a) and b[j] not in _ALPHA) or (i < len(a) and a[i] in _ALPHA):
        return -1
    return 1


def vercmp(a: str, b: str) -> int:
    """Compare two full package versions.

    Args:
        a: First version (e.g. ``1:2.3.4-1``).
        b: Second version.

    Returns:
        -1 if a is older than b, 0 if equal, 1 if a is newer.
    """
    if a == b:
        return 0

    epoch_a, ver_a, rel_a = _split_evr(a)
    epoch_b, ver_b, rel_b = _split_evr(b)

    result = rpmvercmp(epoch_a, epoch_b)
    if result != 0:
        return result

    result = rpmvercmp(ver_a, ver_b)
    if result != 0:
        return result

    # pkgrel only participates when both sides carry one
    if rel_a is not None and rel_b is not None:
        return rpmvercmp(rel_a, rel_b)
    return 0
