"""Cooperative cancellation for running pipelines."""

from __future__ import annotations

import threading
import time

from query_engine.domain.errors import Cancelled


class CancellationToken:
    """Cancellation flag with an optional deadline.

    Operators call check() on every pull; a cancelled or expired token makes
    the pull raise Cancelled. cancel() may be called from any thread.
    """

    def __init__(self, timeout_seconds: float | None = None) -> None:
        self._event = threading.Event()
        self._deadline: float | None = None
        if timeout_seconds is not None:
            self._deadline = time.monotonic() + timeout_seconds

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def check(self) -> None:
        """Raise Cancelled if the token was cancelled or its deadline passed."""
        if self._event.is_set():
            raise Cancelled("Query was cancelled")
        if self.expired:
            raise Cancelled("Query exceeded its timeout")
