"""Unit tests for Arch version comparison."""

import pytest
from reap.utils.version import rpmvercmp, vercmp


class TestRpmvercmp:
    """Tests for segment-wise comparison."""

    @pytest.mark.parametrize(
        ("a", "b", "expected"),
        [
            ("1.0", "1.0", 0),
            ("1.0", "1.1", -1),
            ("1.1", "1.0", 1),
            ("1.5", "1.10", -1),
            ("1.001", "1.1", 0),
            ("1.0", "1.0.1", -1),
            ("1.0a", "1.0", -1),
            ("1.0alpha", "1.0beta", -1),
            ("1.0.1", "1.0.a", 1),
            ("2.0", "1.99.99", 1),
        ],
    )
    def test_ordering(self, a: str, b: str, expected: int) -> None:
        """Segments compare numerically or alphabetically like pacman."""
        assert rpmvercmp(a, b) == expected

    def test_antisymmetric(self) -> None:
        """Swapping arguments flips the sign."""
        assert rpmvercmp("1.2.3", "1.2.10") == -rpmvercmp("1.2.10", "1.2.3")


class TestVercmp:
    """Tests for full version comparison with epoch and pkgrel."""

    def test_equal_strings(self) -> None:
        """Identical versions are equal."""
        assert vercmp("1.0-1", "1.0-1") == 0

    def test_epoch_wins(self) -> None:
        """A higher epoch beats any pkgver."""
        assert vercmp("1:1.0-1", "2.0-1") == 1
        assert vercmp("2.0-1", "1:1.0-1") == -1

    def test_missing_epoch_is_zero(self) -> None:
        """An explicit epoch of 0 equals no epoch."""
        assert vercmp("0:1.0-1", "1.0-1") == 0

    def test_pkgrel_compared(self) -> None:
        """pkgrel breaks ties between equal pkgvers."""
        assert vercmp("1.0-1", "1.0-2") == -1
        assert vercmp("1.0-10", "1.0-9") == 1

    def test_pkgrel_ignored_when_one_side_lacks_it(self) -> None:
        """pkgrel only participates when both versions carry one."""
        assert vercmp("1.0-5", "1.0") == 0
        assert vercmp("1.0", "1.0-5") == 0

    def test_pkgver_before_pkgrel(self) -> None:
        """pkgver differences dominate pkgrel differences."""
        assert vercmp("1.1-1", "1.0-9") == 1

    def test_prerelease_below_release(self) -> None:
        """Alphabetic suffixes sort below the plain release."""
        assert vercmp("14.1.0rc1-1", "14.1.0-1") == -1
