"""Host operation models.

An Action is one package an operator writes to the host during a
commit; an ActionResult is what the operator reports back.
"""

from dataclasses import dataclass
from enum import Enum

from reap.models.record import BackendOrigin


class ActionType(Enum):
    """Kind of host operation an operator performs."""

    INSTALL = "install"


@dataclass(frozen=True, slots=True)
class Action:
    """A vetted package an operator applies to the host.

    Attributes:
        action_type: The kind of host operation.
        package: Name of the package being applied.
        origin: Backend the package came from.
    """

    action_type: ActionType
    package: str
    origin: BackendOrigin

    def __post_init__(self) -> None:
        if not self.package:
            msg = "Package name cannot be empty"
            raise ValueError(msg)


@dataclass(frozen=True, slots=True)
class ActionResult:
    """Outcome of one host operation.

    Attributes:
        action: The operation that ran.
        success: Whether the package reached the host.
        error: Operator output explaining a failure.
    """

    action: Action
    success: bool
    error: str | None = None

    @property
    def failed(self) -> bool:
        """Check if the operation failed."""
        return not self.success
