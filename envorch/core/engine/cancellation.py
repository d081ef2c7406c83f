"""
Cancellation and deadlines for long-running operations.

Cancellation is cooperative: the executor checks the token before each
plan action. An action already running completes; nothing after it
starts.
"""

from __future__ import annotations

import threading
import time


class CancelToken:
    """A one-shot cancellation signal shared between caller and executor."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason = ""

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class Deadline:
    """A caller-supplied time budget measured on the monotonic clock."""

    def __init__(self, seconds: float | None = None):
        self.seconds = seconds
        self.at = None if seconds is None else time.monotonic() + seconds

    @property
    def expired(self) -> bool:
        return self.at is not None and time.monotonic() >= self.at

    def remaining(self) -> float | None:
        if self.at is None:
            return None
        return max(0.0, self.at - time.monotonic())

    def __repr__(self) -> str:
        return f"<Deadline seconds={self.seconds}>"
