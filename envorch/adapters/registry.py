"""
Provisioner registry — central dispatch for all provisioner operations.

The engine never talks to provisioners directly — always through the
registry, which adds validation, circuit breaking, timing, and turns
any stray exception into a failed receipt.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from envorch.adapters.base import ExecutionContext, Provisioner
from envorch.core.models.action import Receipt
from envorch.core.reliability.circuit_breaker import CircuitBreakerRegistry

logger = logging.getLogger(__name__)


class ProvisionerRegistry:
    """Registry and dispatcher for provisioners.

    Features:
        - Register provisioners by name; the first one becomes the default
        - Execute operations through the selected provisioner
        - Per-provisioner circuit breakers
        - Query provisioner availability
    """

    def __init__(
        self,
        default: str | None = None,
        circuit_breakers: CircuitBreakerRegistry | None = None,
    ):
        self._provisioners: dict[str, Provisioner] = {}
        self._default = default
        self._circuit_breakers = circuit_breakers

    @property
    def default(self) -> str | None:
        return self._default

    @property
    def circuit_breakers(self) -> CircuitBreakerRegistry | None:
        return self._circuit_breakers

    def register(self, provisioner: Provisioner, default: bool = False) -> None:
        """Register a provisioner instance."""
        name = provisioner.name
        if name in self._provisioners:
            logger.warning("Overwriting existing provisioner: %s", name)
        self._provisioners[name] = provisioner
        if default or self._default is None:
            self._default = name
        logger.debug("Registered provisioner: %s", name)

    def get(self, name: str) -> Provisioner | None:
        """Look up a provisioner by name."""
        return self._provisioners.get(name)

    def list_provisioners(self) -> list[str]:
        return list(self._provisioners.keys())

    def provisioner_status(self) -> dict[str, dict[str, Any]]:
        """Availability of all registered provisioners."""
        status = {}
        for name, provisioner in self._provisioners.items():
            try:
                available = provisioner.is_available()
            except Exception:
                available = False
            status[name] = {
                "name": name,
                "available": available,
                "default": name == self._default,
                "type": provisioner.__class__.__name__,
            }
        return status

    def execute(self, context: ExecutionContext, provisioner: str | None = None) -> Receipt:
        """Carry out an operation through a provisioner (never raises).

        1. Resolve the provisioner (explicit name or the default)
        2. Validate the context
        3. Check the circuit breaker
        4. Execute and record the outcome
        """
        start_time = time.monotonic()
        name = provisioner or self._default or ""

        target = self._provisioners.get(name)
        if target is None:
            return Receipt.failure(
                provisioner=name,
                action_id=context.action_id,
                error=f"No provisioner registered for '{name}'",
            )

        # Validate
        try:
            is_valid, error_msg = target.validate(context)
            if not is_valid:
                return Receipt.failure(
                    provisioner=name,
                    action_id=context.action_id,
                    error=f"Validation failed: {error_msg}",
                )
        except Exception as e:
            return Receipt.failure(
                provisioner=name,
                action_id=context.action_id,
                error=f"Validation error: {e}",
            )

        # ── Circuit breaker check ────────────────────────────────
        if self._circuit_breakers:
            cb = self._circuit_breakers.get_or_create(name)
            if not cb.allow_request():
                return Receipt.failure(
                    provisioner=name,
                    action_id=context.action_id,
                    error=f"Circuit breaker OPEN for provisioner '{name}'",
                    metadata={"circuit_state": cb.state.value},
                )

        # Execute
        try:
            receipt = target.execute(context)
        except Exception as e:
            logger.error("Provisioner %s raised during %s: %s", name, context.action_id, e)
            receipt = Receipt.failure(
                provisioner=name,
                action_id=context.action_id,
                error=f"Unexpected error: {e}",
            )

        # ── Circuit breaker record ───────────────────────────────
        if self._circuit_breakers:
            cb = self._circuit_breakers.get_or_create(name)
            if receipt.failed:
                cb.record_failure()
            else:
                cb.record_success()

        receipt.duration_ms = int((time.monotonic() - start_time) * 1000)
        return receipt
