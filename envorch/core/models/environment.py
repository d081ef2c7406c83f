"""
Environment model — the registry's unit of state.

One record per environment, persisted as JSON by the environment
store. Records are only mutated by orchestrator operations while the
environment's lease is held.

Lifecycle:
    PENDING → ACTIVE → DESTROYING → DESTROYED

``ACTIVE`` is re-entered after every successful deploy. Teardown always
passes through ``DESTROYING``. ``DESTROYED`` is terminal for the record;
a later ``create`` with the same name replaces the tombstone.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

_ENV_NAME_RE = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
MAX_NAME_LENGTH = 63


def _now() -> datetime:
    """Current UTC time."""
    return datetime.now(UTC)


def is_valid_environment_name(name: str) -> bool:
    """Environment names double as namespace names: DNS labels."""
    return bool(_ENV_NAME_RE.match(name)) and len(name) <= MAX_NAME_LENGTH


class LifecycleState(StrEnum):
    """Environment lifecycle states."""

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    DESTROYING = "DESTROYING"
    DESTROYED = "DESTROYED"


# Allowed transitions; anything else is a bug in the caller.
TRANSITIONS: dict[LifecycleState, frozenset[LifecycleState]] = {
    LifecycleState.PENDING: frozenset({LifecycleState.ACTIVE, LifecycleState.DESTROYING}),
    LifecycleState.ACTIVE: frozenset({LifecycleState.ACTIVE, LifecycleState.DESTROYING}),
    LifecycleState.DESTROYING: frozenset({LifecycleState.DESTROYING, LifecycleState.DESTROYED}),
    LifecycleState.DESTROYED: frozenset(),
}


class DeployedComponent(BaseModel):
    """A component as it is currently running in the environment."""

    name: str
    version: str
    config_digest: str = ""
    dependencies: list[str] = Field(default_factory=list)
    deployed_at: datetime = Field(default_factory=_now)


class DeployRecord(BaseModel):
    """Summary of the last deploy (or teardown) applied to the environment."""

    operation_id: str = ""
    component: str = ""
    status: str = ""                # ok, partial, failed
    started_at: datetime | None = None
    ended_at: datetime | None = None
    applied: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    unapplied: list[str] = Field(default_factory=list)
    error: str | None = None


class Environment(BaseModel):
    """A named, isolated deployment target bound to a cluster."""

    # ── Schema ───────────────────────────────────────────────────
    schema_version: int = 1

    # ── Identity ─────────────────────────────────────────────────
    name: str
    cluster: str
    account: str = ""

    # ── Lifecycle ────────────────────────────────────────────────
    state: LifecycleState = LifecycleState.PENDING
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    ttl_seconds: int | None = None
    destroyed_at: datetime | None = None

    # ── Deployment ───────────────────────────────────────────────
    deployed: dict[str, DeployedComponent] = Field(default_factory=dict)
    degraded: bool = False
    last_deploy: DeployRecord | None = None

    # ── Extensible metadata ──────────────────────────────────────
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def expires_at(self) -> datetime | None:
        """Deadline after which the reaper destroys the environment."""
        if self.ttl_seconds is None:
            return None
        return self.created_at + timedelta(seconds=self.ttl_seconds)

    def is_expired(self, now: datetime | None = None) -> bool:
        deadline = self.expires_at
        if deadline is None:
            return False
        return (now or _now()) >= deadline

    @property
    def has_deployment(self) -> bool:
        return bool(self.deployed)

    @property
    def is_live(self) -> bool:
        return self.state != LifecycleState.DESTROYED

    def transition(self, new_state: LifecycleState, now: datetime | None = None) -> None:
        """Move to ``new_state``, enforcing the lifecycle graph."""
        if new_state not in TRANSITIONS[self.state]:
            raise ValueError(
                f"Illegal lifecycle transition for '{self.name}': "
                f"{self.state.value} → {new_state.value}"
            )
        self.state = new_state
        if new_state == LifecycleState.DESTROYED:
            self.destroyed_at = now or _now()
        self.touch(now)

    def touch(self, now: datetime | None = None) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = now or _now()

    def summary(self) -> dict[str, Any]:
        """Compact view used by list output."""
        expires = self.expires_at
        return {
            "name": self.name,
            "cluster": self.cluster,
            "state": self.state.value,
            "degraded": self.degraded,
            "components": sorted(self.deployed),
            "created_at": self.created_at.isoformat(),
            "ttl_seconds": self.ttl_seconds,
            "expires_at": expires.isoformat() if expires else None,
        }


class Lease(BaseModel):
    """Single-writer token for one environment.

    Leases expire so a crashed holder never blocks an environment
    forever; a live holder renews after each applied action.
    """

    name: str
    holder: str
    acquired_at: datetime = Field(default_factory=_now)
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or _now()) >= self.expires_at
