"""Unit tests for theme loading."""

from pathlib import Path

import pytest
from pydantic import ValidationError
from reap.core.theme import ThemeColors, get_rich_theme, get_user_theme_path, load_theme


class TestThemeColors:
    """Tests for color validation."""

    def test_defaults_valid(self) -> None:
        """Default colors validate."""
        assert ThemeColors().verdict_blocked.startswith("#")

    @pytest.mark.parametrize("value", ["red", "#12", "#zzzzzz"])
    def test_invalid_colors_rejected(self, value: str) -> None:
        """Non-hex values are rejected."""
        with pytest.raises(ValidationError):
            ThemeColors(error=value)


class TestLoadTheme:
    """Tests for theme merging."""

    def test_user_override_merged(self, isolated_dirs: Path) -> None:
        """User colors override bundled ones."""
        path = get_user_theme_path()
        path.parent.mkdir(parents=True)
        path.write_text('[colors]\nverdict_warn = "#123456"\n')

        assert load_theme().verdict_warn == "#123456"

    def test_invalid_user_theme_falls_back(self, isolated_dirs: Path) -> None:
        """An invalid user theme yields the defaults."""
        path = get_user_theme_path()
        path.parent.mkdir(parents=True)
        path.write_text('[colors]\nerror = "nope"\n')

        assert load_theme() == ThemeColors()

    def test_rich_theme_has_verdict_styles(self) -> None:
        """The Rich theme exposes verdict and diff styles."""
        theme = get_rich_theme(ThemeColors())
        for style in ("verdict.trusted", "verdict.warn", "verdict.blocked", "added", "removed"):
            assert style in theme.styles
