"""Sandbox backends and the orchestrator that drives them.

This module exports the driver protocol, the concrete drivers and the
orchestrator.
"""

from reap.sandbox.bubblewrap import BubblewrapDriver
from reap.sandbox.driver import SandboxDriver, SandboxEnv
from reap.sandbox.firejail import FirejailDriver
from reap.sandbox.lxc import LxcDriver
from reap.sandbox.nspawn import NspawnDriver
from reap.sandbox.orchestrator import SandboxOrchestrator

__all__ = [
    "BubblewrapDriver",
    "FirejailDriver",
    "LxcDriver",
    "NspawnDriver",
    "SandboxDriver",
    "SandboxEnv",
    "SandboxOrchestrator",
]
