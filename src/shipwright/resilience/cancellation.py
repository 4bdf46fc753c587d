"""
Cooperative cancellation.

A CancellationToken is an event that long-running actions observe. The
pipeline owns one token per run; the executor hands each stage a child
token so a stage timeout cancels only that stage while an operator abort
cancels everything below the run.
"""

from __future__ import annotations

import threading
from collections.abc import Callable

from shipwright.errors import RunAbortedError


class CancellationToken:
    """
    Thread-safe cancellation signal with parent/child linking.

    Cancelling a token cancels all of its children. Waiting on a token
    blocks without consuming CPU and returns early on cancellation.

    Example:
        token = CancellationToken()
        child = token.child()
        ...
        if child.wait(10.0):
            return  # cancelled during the wait
    """

    def __init__(self, parent: CancellationToken | None = None) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: list[CancellationToken] = []
        self._parent = parent
        self._reason: str | None = None
        self._callbacks: list[Callable[[], None]] = []

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Cancel this token and every child. Idempotent."""
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()
            children = list(self._children)
            callbacks, self._callbacks = self._callbacks, []
        for child in children:
            child.cancel(reason)
        for callback in callbacks:
            callback()

    def child(self) -> CancellationToken:
        """Create a token cancelled together with this one."""
        token = CancellationToken(parent=self)
        with self._lock:
            self._children.append(token)
            cancelled = self._event.is_set()
        if cancelled:
            token.cancel(self._reason or "cancelled")
        return token

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Call ``callback`` once when the token is cancelled.

        Runs immediately if the token is already cancelled.

        Returns:
            A function that unregisters the callback
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return lambda: self._remove_callback(callback)
        callback()
        return lambda: None

    def _remove_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def release(self) -> None:
        """Unlink this token from its parent once it is no longer needed."""
        parent = self._parent
        if parent is None:
            return
        with parent._lock:
            if self in parent._children:
                parent._children.remove(self)
        self._parent = None

    def wait(self, timeout: float | None = None) -> bool:
        """
        Block until cancelled or until ``timeout`` seconds pass.

        Returns:
            True if the token was cancelled
        """
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        """Raise RunAbortedError if cancelled."""
        if self._event.is_set():
            raise RunAbortedError(f"Cancelled: {self._reason}", reason=self._reason)

    def __repr__(self) -> str:
        state = f"cancelled ({self._reason})" if self.is_cancelled else "active"
        return f"CancellationToken({state})"
