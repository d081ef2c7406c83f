"""
Circuit breaker — stop hammering a provisioner that keeps failing.

States:
    CLOSED    → Normal operation. Consecutive failures counted.
    OPEN      → Calls rejected until the recovery timeout passes.
    HALF_OPEN → One probe call allowed to test recovery.

Transitions:
    CLOSED → OPEN:      failure_count >= threshold
    OPEN → HALF_OPEN:   recovery_timeout elapsed
    HALF_OPEN → CLOSED: probe succeeds
    HALF_OPEN → OPEN:   probe fails

Deploys against different environments run in parallel threads and
share one breaker per provisioner, so every method takes the lock.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class CircuitState(StrEnum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreaker:
    """Per-provisioner circuit breaker.

    Args:
        name: Identifier (the provisioner name).
        failure_threshold: Consecutive failures before opening.
        recovery_timeout: Seconds before a probe call is let through.
        clock: Monotonic time source (injectable for tests).
    """

    name: str
    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    clock: Callable[[], float] = time.monotonic

    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    opened_at: float = 0.0
    total_rejections: int = 0
    probe_in_flight: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def allow_request(self) -> bool:
        """Whether a call may proceed. Rejections are counted."""
        with self._lock:
            if self.state == CircuitState.CLOSED:
                return True

            if self.state == CircuitState.OPEN:
                if self.clock() - self.opened_at >= self.recovery_timeout:
                    self._transition(CircuitState.HALF_OPEN)
                    self.probe_in_flight = True
                    return True
                self.total_rejections += 1
                return False

            # HALF_OPEN: a single probe at a time
            if self.probe_in_flight:
                self.total_rejections += 1
                return False
            self.probe_in_flight = True
            return True

    def record_success(self) -> None:
        with self._lock:
            self.probe_in_flight = False
            if self.state != CircuitState.CLOSED:
                self._transition(CircuitState.CLOSED)
            self.failure_count = 0

    def record_failure(self) -> None:
        with self._lock:
            self.probe_in_flight = False
            if self.state == CircuitState.HALF_OPEN:
                self._open()
                return
            self.failure_count += 1
            if self.state == CircuitState.CLOSED and self.failure_count >= self.failure_threshold:
                self._open()

    def reset(self) -> None:
        """Force the breaker closed."""
        with self._lock:
            self._transition(CircuitState.CLOSED)
            self.failure_count = 0
            self.total_rejections = 0
            self.probe_in_flight = False

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "name": self.name,
                "state": self.state.value,
                "failure_count": self.failure_count,
                "total_rejections": self.total_rejections,
                "failure_threshold": self.failure_threshold,
                "recovery_timeout": self.recovery_timeout,
            }

    def _open(self) -> None:
        self.opened_at = self.clock()
        self._transition(CircuitState.OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        old = self.state
        if old == new_state:
            return
        self.state = new_state
        logger.info("Circuit breaker '%s': %s → %s", self.name, old.value, new_state.value)


@dataclass
class CircuitBreakerRegistry:
    """One breaker per provisioner, created on first use."""

    breakers: dict[str, CircuitBreaker] = field(default_factory=dict)
    default_threshold: int = 5
    default_timeout: float = 30.0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def get_or_create(self, name: str) -> CircuitBreaker:
        with self._lock:
            if name not in self.breakers:
                self.breakers[name] = CircuitBreaker(
                    name=name,
                    failure_threshold=self.default_threshold,
                    recovery_timeout=self.default_timeout,
                )
            return self.breakers[name]

    def get_status(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            breakers = list(self.breakers.items())
        return {name: cb.to_dict() for name, cb in breakers}

    def open_breakers(self) -> list[str]:
        with self._lock:
            breakers = list(self.breakers.values())
        return [cb.name for cb in breakers if cb.state == CircuitState.OPEN]

    def reset_all(self) -> None:
        with self._lock:
            breakers = list(self.breakers.values())
        for cb in breakers:
            cb.reset()
