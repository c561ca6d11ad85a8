"""Chaotic-AUR backend.

Chaotic-AUR is a pacman repository of prebuilt AUR packages, so it is
queried exactly like the official repositories, restricted to the
prebuilt AUR repositories enabled in ``pacman.conf``.
"""

import logging
from pathlib import Path

from reap.backends.pacman import PacmanBackend
from reap.models.record import BackendOrigin

logger = logging.getLogger(__name__)

PACMAN_CONF = Path("/etc/pacman.conf")


def enabled_binary_repos(conf: Path = PACMAN_CONF) -> tuple[str, ...]:
    """Prebuilt AUR repositories (``[*-aur]`` sections) enabled in pacman.conf."""
    try:
        text = conf.read_text(encoding="utf-8")
    except OSError as e:
        logger.debug("Cannot read %s: %s", conf, e)
        return ()
    repos: list[str] = []
    for line in text.splitlines():
        line = line.strip()
        if line.startswith("[") and line.endswith("]"):
            repo = line[1:-1].strip()
            if repo.endswith("-aur") and repo not in repos:
                repos.append(repo)
    return tuple(repos)


class ChaoticBackend(PacmanBackend):
    """Backend for Chaotic-AUR and other prebuilt AUR repositories."""

    DEFAULT_REPOS = ("chaotic-aur",)

    def __init__(
        self,
        repos: tuple[str, ...] | None = None,
        timeout: float = 30.0,
        pacman_conf: Path = PACMAN_CONF,
    ) -> None:
        super().__init__(repos or enabled_binary_repos(pacman_conf) or None, timeout)

    @property
    def origin(self) -> BackendOrigin:
        """Return CHAOTIC as the origin."""
        return BackendOrigin.CHAOTIC
