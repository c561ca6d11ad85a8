"""Unit tests for the cancellation token."""

import threading

import pytest
from reap.core.errors import CancelledError
from reap.utils.cancel import CancelToken


class TestCancelToken:
    """Tests for CancelToken."""

    def test_starts_uncancelled(self) -> None:
        """A new token is not cancelled."""
        token = CancelToken()
        assert token.cancelled is False
        token.raise_if_cancelled("fetch")

    def test_cancel_sets_flag(self) -> None:
        """cancel() is visible through the flag."""
        token = CancelToken()
        token.cancel()
        assert token.cancelled is True

    def test_raise_if_cancelled_names_stage(self) -> None:
        """The raised error carries the interrupted stage."""
        token = CancelToken()
        token.cancel()

        with pytest.raises(CancelledError) as exc_info:
            token.raise_if_cancelled("sandbox")

        assert exc_info.value.interrupted == "sandbox"
        assert exc_info.value.stage == "cancel"

    def test_wait_returns_on_cancel_from_other_thread(self) -> None:
        """wait() wakes up when another thread cancels."""
        token = CancelToken()
        timer = threading.Timer(0.05, token.cancel)
        timer.start()

        assert token.wait(timeout=5) is True
        timer.join()

    def test_wait_times_out(self) -> None:
        """wait() returns False when nobody cancels."""
        assert CancelToken().wait(timeout=0.01) is False
