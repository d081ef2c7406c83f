"""
Mock provisioner — test double for every provisioner operation.

Records every call, can be told to fail specific operations, to take
time, or to run a hook while "provisioning" (used by tests to cancel a
deploy mid-flight or to observe concurrency).
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from envorch.adapters.base import ExecutionContext, Provisioner
from envorch.core.models.action import Receipt


class MockProvisioner(Provisioner):
    """In-memory provisioner. Succeeds unless configured otherwise.

    Failures are keyed by ``"<OPERATION>:<component>"`` (e.g.
    ``"CREATE:api"``) or ``"<OPERATION>:<environment>"`` for
    environment-level operations.
    """

    def __init__(
        self,
        provisioner_name: str = "mock",
        available: bool = True,
        delay: float = 0.0,
        default_output: str = "[mock] executed",
    ):
        self._name = provisioner_name
        self._available = available
        self._delay = delay
        self._default_output = default_output
        self._failures: dict[str, tuple[str, int | None]] = {}
        self._hooks: list[Callable[[ExecutionContext], None]] = []
        self._call_log: list[ExecutionContext] = []
        self._lock = threading.Lock()
        self._active: dict[str, int] = {}
        self.max_concurrency: dict[str, int] = {}

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[ExecutionContext]:
        """All execution contexts this mock has received, in call order."""
        with self._lock:
            return list(self._call_log)

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self._call_log)

    def labels(self, environment: str | None = None) -> list[str]:
        """Calls as ``"OPERATION target"`` strings, e.g. ``"CREATE db"``."""
        return [
            f"{ctx.operation} {ctx.action.component if ctx.action else ctx.environment}"
            for ctx in self.call_log
            if environment is None or ctx.environment == environment
        ]

    def is_available(self) -> bool:
        return self._available

    def set_failure(self, key: str, error: str = "Mock failure", times: int | None = None) -> None:
        """Make an operation fail (``times=None`` = until cleared)."""
        self._failures[key] = (error, times)

    def clear_failure(self, key: str) -> None:
        self._failures.pop(key, None)

    def add_hook(self, hook: Callable[[ExecutionContext], None]) -> None:
        """Run ``hook(context)`` inside every execute call."""
        self._hooks.append(hook)

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        with self._lock:
            self._call_log.append(context)
            active = self._active.get(context.environment, 0) + 1
            self._active[context.environment] = active
            self.max_concurrency[context.environment] = max(
                self.max_concurrency.get(context.environment, 0), active
            )

        try:
            for hook in self._hooks:
                hook(context)
            if self._delay:
                time.sleep(self._delay)
            return self._respond(context)
        finally:
            with self._lock:
                self._active[context.environment] -= 1

    def _respond(self, context: ExecutionContext) -> Receipt:
        target = context.action.component if context.action else context.environment
        key = f"{context.operation}:{target}"

        with self._lock:
            failure = self._failures.get(key)
            if failure is not None:
                error, times = failure
                if times is not None:
                    if times <= 1:
                        del self._failures[key]
                    else:
                        self._failures[key] = (error, times - 1)

        if failure is not None:
            return Receipt.failure(
                provisioner=self._name,
                action_id=context.action_id,
                error=failure[0],
            )

        return Receipt.success(
            provisioner=self._name,
            action_id=context.action_id,
            output=self._default_output,
            metadata={"mock": True},
        )

    def reset(self) -> None:
        """Clear call log, failures and hooks."""
        with self._lock:
            self._call_log.clear()
            self._failures.clear()
            self._hooks.clear()
            self._active.clear()
            self.max_concurrency.clear()
