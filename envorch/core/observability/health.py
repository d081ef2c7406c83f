"""
Health checker — aggregate orchestrator health for the ``health`` command.

Checks:
    store            records readable, state directory reachable
    provisioners     registered and available
    circuit_breakers none OPEN
    environments     no environment overdue for reaping, none degraded
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from envorch.adapters.registry import ProvisionerRegistry
from envorch.core.errors import CorruptRecord
from envorch.core.models.environment import LifecycleState
from envorch.core.registry.registry import EnvironmentRegistry
from envorch.core.reliability.circuit_breaker import CircuitBreakerRegistry, CircuitState

logger = logging.getLogger(__name__)

HEALTHY, DEGRADED, UNHEALTHY = "healthy", "degraded", "unhealthy"


@dataclass
class ComponentHealth:
    """Health of a single component."""

    name: str
    status: str = "unknown"
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class SystemHealth:
    """Aggregate: the worst status of any component."""

    status: str = HEALTHY
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    components: list[ComponentHealth] = field(default_factory=list)

    def add(self, component: ComponentHealth) -> None:
        self.components.append(component)
        statuses = {c.status for c in self.components}
        if UNHEALTHY in statuses:
            self.status = UNHEALTHY
        elif DEGRADED in statuses or "unknown" in statuses:
            self.status = DEGRADED
        else:
            self.status = HEALTHY

    @property
    def healthy(self) -> bool:
        return self.status == HEALTHY

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "timestamp": self.timestamp,
            "components": [c.to_dict() for c in self.components],
        }


def check_store(registry: EnvironmentRegistry) -> ComponentHealth:
    unreadable = []
    names = registry.store.names()
    for name in names:
        try:
            registry.store.load(name)
        except CorruptRecord:
            unreadable.append(name)

    details = {"backend": registry.store.describe(), "records": len(names)}
    if unreadable:
        return ComponentHealth(
            name="store",
            status=UNHEALTHY,
            message=f"{len(unreadable)} unreadable record(s)",
            details={**details, "unreadable": unreadable},
        )
    return ComponentHealth(name="store", status=HEALTHY, message=f"{len(names)} record(s)", details=details)


def check_provisioners(provisioners: ProvisionerRegistry) -> ComponentHealth:
    status = provisioners.provisioner_status()
    if not status:
        return ComponentHealth(name="provisioners", status=UNHEALTHY, message="No provisioner registered")
    unavailable = [name for name, s in status.items() if not s["available"]]
    if unavailable:
        return ComponentHealth(
            name="provisioners",
            status=UNHEALTHY,
            message=f"Unavailable: {', '.join(unavailable)}",
            details=status,
        )
    return ComponentHealth(
        name="provisioners",
        status=HEALTHY,
        message=f"{len(status)} available",
        details=status,
    )


def check_circuit_breakers(breakers: CircuitBreakerRegistry) -> ComponentHealth:
    status = breakers.get_status()
    if not status:
        return ComponentHealth(name="circuit_breakers", status=HEALTHY, message="No calls yet")

    open_count = sum(1 for s in status.values() if s["state"] == CircuitState.OPEN.value)
    half_open = sum(1 for s in status.values() if s["state"] == CircuitState.HALF_OPEN.value)
    if open_count:
        result, message = UNHEALTHY, f"{open_count}/{len(status)} circuits open"
    elif half_open:
        result, message = DEGRADED, f"{half_open}/{len(status)} circuits half-open"
    else:
        result, message = HEALTHY, f"All {len(status)} circuits closed"
    return ComponentHealth(name="circuit_breakers", status=result, message=message, details=status)


def check_environments(
    registry: EnvironmentRegistry,
    grace_seconds: float = 0.0,
) -> ComponentHealth:
    """Overdue = TTL elapsed more than ``grace_seconds`` ago and still live."""
    now = registry.clock()
    overdue, degraded, stuck = [], [], []
    for env in registry.list():
        expires = env.expires_at
        if expires is not None and (now - expires).total_seconds() > grace_seconds:
            overdue.append(env.name)
        if env.degraded:
            degraded.append(env.name)
        if env.state == LifecycleState.DESTROYING:
            stuck.append(env.name)

    details = {"overdue": overdue, "degraded": degraded, "destroying": stuck}
    if overdue or stuck:
        problems = []
        if overdue:
            problems.append(f"{len(overdue)} overdue for reaping")
        if stuck:
            problems.append(f"{len(stuck)} stuck in DESTROYING")
        return ComponentHealth(name="environments", status=DEGRADED, message=", ".join(problems), details=details)
    if degraded:
        return ComponentHealth(
            name="environments",
            status=DEGRADED,
            message=f"{len(degraded)} degraded",
            details=details,
        )
    return ComponentHealth(name="environments", status=HEALTHY, message="All environments in order", details=details)


def check_system_health(registry: EnvironmentRegistry, grace_seconds: float = 0.0) -> SystemHealth:
    health = SystemHealth()
    health.add(check_store(registry))
    health.add(check_provisioners(registry.provisioners))
    if registry.provisioners.circuit_breakers is not None:
        health.add(check_circuit_breakers(registry.provisioners.circuit_breakers))
    health.add(check_environments(registry, grace_seconds))
    return health
