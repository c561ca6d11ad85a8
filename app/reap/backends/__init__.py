"""Package backends for the package sources reap resolves against.

This module exports the backend classes for querying and fetching
packages.
"""

from reap.backends.aur import AurBackend
from reap.backends.base import Backend
from reap.backends.chaotic import ChaoticBackend
from reap.backends.flatpak import FlatpakBackend
from reap.backends.pacman import PacmanBackend
from reap.backends.tap import TapBackend

__all__ = [
    "AurBackend",
    "Backend",
    "ChaoticBackend",
    "FlatpakBackend",
    "PacmanBackend",
    "TapBackend",
]
