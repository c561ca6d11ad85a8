"""reap - unified, sandbox-first package manager for Arch Linux."""

__version__ = "0.4.0"
