"""
Environment stores — where environment records and leases live.

The registry only talks to the ``EnvironmentStore`` interface. Two
implementations exist: ``InMemoryEnvironmentStore`` (tests, embedding)
and ``FileEnvironmentStore`` (one JSON file per environment, durable
across restarts).

Stores hand out copies: a reader never sees a record mid-mutation, and
mutating a returned record changes nothing until ``save``.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta

from envorch.core.models.environment import Environment, Lease


class EnvironmentStore(ABC):
    """Persistence for environment records and their leases."""

    # ── Records ──────────────────────────────────────────────────

    @abstractmethod
    def load(self, name: str) -> Environment | None:
        """Return a copy of the record, or None."""

    @abstractmethod
    def save(self, environment: Environment) -> None:
        """Persist the record (whole-record replace, atomic)."""

    @abstractmethod
    def names(self) -> list[str]:
        """Names of all stored records, sorted."""

    # ── Leases ───────────────────────────────────────────────────

    @abstractmethod
    def acquire_lease(self, name: str, holder: str, ttl: float, now: datetime) -> Lease | None:
        """Take the lease if it is free or expired. None if someone else holds it."""

    @abstractmethod
    def renew_lease(self, name: str, holder: str, ttl: float, now: datetime) -> Lease | None:
        """Extend a lease we hold. None if we no longer hold it."""

    @abstractmethod
    def release_lease(self, name: str, holder: str) -> None:
        """Drop the lease if we hold it."""

    @abstractmethod
    def get_lease(self, name: str) -> Lease | None:
        """Current lease on a name, expired or not."""

    def describe(self) -> str:
        return self.__class__.__name__


class InMemoryEnvironmentStore(EnvironmentStore):
    """Process-local store. Thread-safe; loses everything on exit."""

    def __init__(self) -> None:
        self._records: dict[str, Environment] = {}
        self._leases: dict[str, Lease] = {}
        self._mutex = threading.Lock()

    def load(self, name: str) -> Environment | None:
        with self._mutex:
            record = self._records.get(name)
            return record.model_copy(deep=True) if record is not None else None

    def save(self, environment: Environment) -> None:
        with self._mutex:
            self._records[environment.name] = environment.model_copy(deep=True)

    def names(self) -> list[str]:
        with self._mutex:
            return sorted(self._records)

    def acquire_lease(self, name: str, holder: str, ttl: float, now: datetime) -> Lease | None:
        with self._mutex:
            current = self._leases.get(name)
            if current is not None and not current.is_expired(now):
                return None
            lease = Lease(
                name=name,
                holder=holder,
                acquired_at=now,
                expires_at=now + timedelta(seconds=ttl),
            )
            self._leases[name] = lease
            return lease.model_copy()

    def renew_lease(self, name: str, holder: str, ttl: float, now: datetime) -> Lease | None:
        with self._mutex:
            current = self._leases.get(name)
            if current is None or current.holder != holder:
                return None
            current.expires_at = now + timedelta(seconds=ttl)
            return current.model_copy()

    def release_lease(self, name: str, holder: str) -> None:
        with self._mutex:
            current = self._leases.get(name)
            if current is not None and current.holder == holder:
                del self._leases[name]

    def get_lease(self, name: str) -> Lease | None:
        with self._mutex:
            current = self._leases.get(name)
            return current.model_copy() if current is not None else None

    def describe(self) -> str:
        return "memory"
