"""Host operators that install vetted packages.

This module exports the operator classes for executing real-system
installs.
"""

from reap.operators.base import Operator
from reap.operators.flatpak import FlatpakOperator
from reap.operators.pacman import PacmanOperator

__all__ = ["FlatpakOperator", "Operator", "PacmanOperator"]
