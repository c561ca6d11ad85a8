"""Cooperative cancellation token shared by workers."""

import threading


class CancelToken:
    """Thread-safe flag that long-running operations poll.

    Cancellation is cooperative: workers check ``cancelled`` at their
    suspension points (backend queries, sandbox steps, commit loop) and
    unwind through their normal failure path.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        """Check whether cancellation was requested."""
        return self._event.is_set()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or the timeout elapses.

        Returns:
            True if cancellation was requested.
        """
        return self._event.wait(timeout)

    def raise_if_cancelled(self, stage: str) -> None:
        """Raise CancelledError if cancellation was requested.

        Args:
            stage: Name of the stage being interrupted.
        """
        if self.cancelled:
            from reap.core.errors import CancelledError

            raise CancelledError(stage)
