"""Tests for cooperative cancellation tokens."""

import threading
import time

import pytest

from shipwright.errors import RunAbortedError
from shipwright.resilience.cancellation import CancellationToken


class TestCancellationToken:
    """Tests for cancel, wait and reason."""

    def test_starts_active(self) -> None:
        token = CancellationToken()
        assert not token.is_cancelled
        assert token.reason is None

    def test_cancel_records_reason(self) -> None:
        token = CancellationToken()
        token.cancel("operator")
        assert token.is_cancelled
        assert token.reason == "operator"

    def test_cancel_is_idempotent(self) -> None:
        """The first reason sticks."""
        token = CancellationToken()
        token.cancel("first")
        token.cancel("second")
        assert token.reason == "first"

    def test_wait_times_out_when_not_cancelled(self) -> None:
        assert CancellationToken().wait(0.01) is False

    def test_wait_wakes_on_cancel(self) -> None:
        """A waiting thread wakes as soon as the token is cancelled."""
        token = CancellationToken()
        threading.Timer(0.05, token.cancel).start()

        start = time.monotonic()
        assert token.wait(10) is True
        assert time.monotonic() - start < 5

    def test_raise_if_cancelled(self) -> None:
        token = CancellationToken()
        token.raise_if_cancelled()
        token.cancel("stop")
        with pytest.raises(RunAbortedError) as exc_info:
            token.raise_if_cancelled()
        assert exc_info.value.reason == "stop"


class TestChildTokens:
    """Tests for parent/child linking."""

    def test_parent_cancels_child(self) -> None:
        parent = CancellationToken()
        child = parent.child()
        parent.cancel("abort")
        assert child.is_cancelled
        assert child.reason == "abort"

    def test_child_does_not_cancel_parent(self) -> None:
        """A stage timeout cancels only the stage."""
        parent = CancellationToken()
        child = parent.child()
        child.cancel("timeout")
        assert not parent.is_cancelled

    def test_child_of_cancelled_parent_starts_cancelled(self) -> None:
        parent = CancellationToken()
        parent.cancel("abort")
        assert parent.child().is_cancelled

    def test_released_child_is_not_cancelled_by_parent(self) -> None:
        parent = CancellationToken()
        child = parent.child()
        child.release()
        parent.cancel("abort")
        assert not child.is_cancelled


class TestCallbacks:
    """Tests for cancellation callbacks."""

    def test_callback_runs_once_on_cancel(self) -> None:
        token = CancellationToken()
        calls: list[str] = []
        token.add_callback(lambda: calls.append("cancelled"))
        token.cancel()
        token.cancel()
        assert calls == ["cancelled"]

    def test_callback_runs_for_child_when_parent_cancels(self) -> None:
        parent = CancellationToken()
        child = parent.child()
        calls: list[str] = []
        child.add_callback(lambda: calls.append("child"))
        parent.cancel()
        assert calls == ["child"]

    def test_unregistered_callback_does_not_run(self) -> None:
        token = CancellationToken()
        calls: list[str] = []
        unregister = token.add_callback(lambda: calls.append("cancelled"))
        unregister()
        token.cancel()
        assert calls == []

    def test_callback_on_cancelled_token_runs_immediately(self) -> None:
        token = CancellationToken()
        token.cancel()
        calls: list[str] = []
        token.add_callback(lambda: calls.append("now"))
        assert calls == ["now"]
