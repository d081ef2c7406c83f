"""
Periodic task — run a function on a fixed interval in a background thread.

Tests call ``run_once()`` directly; the CLI's ``reaper run`` uses
``start()``/``stop()`` (or ``run_forever()`` in the foreground).
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Calls ``fn`` every ``interval`` seconds until stopped.

    An exception raised by ``fn`` is logged and the schedule continues.
    """

    def __init__(self, interval: float, fn: Callable[[], Any], name: str = "periodic-task"):
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.interval = interval
        self.name = name
        self._fn = fn
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> Any:
        """Run the task once in the calling thread and return its result."""
        self.runs += 1
        return self._fn()

    def _tick(self) -> None:
        try:
            self.run_once()
        except Exception as e:
            logger.error("%s: run failed: %s", self.name, e, exc_info=True)

    def run_forever(self) -> None:
        """Run in the calling thread until ``stop()`` is called."""
        logger.info("%s: running every %ss", self.name, self.interval)
        while not self._stop.is_set():
            self._tick()
            self._stop.wait(self.interval)
        logger.info("%s: stopped after %d run(s)", self.name, self.runs)

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_forever, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
