"""
Per-environment locking.

Two layers, both required before a lifecycle-mutating operation runs:

1. An in-process FIFO queue per environment name, so callers in this
   process are served strictly in submission order.
2. A store-backed lease, so separate processes (CI jobs, the reaper)
   exclude each other. Leases expire: a lease left by a dead process
   is treated as released once ``lease_ttl`` has passed.

Different names never contend with each other.
"""

from __future__ import annotations

import logging
import os
import socket
import threading
import time
import uuid
from collections import deque
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

from envorch.core.engine.cancellation import Deadline
from envorch.core.errors import Timeout
from envorch.core.models.environment import Lease
from envorch.core.registry.store import EnvironmentStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def new_holder_id() -> str:
    """Identity written into a lease: host, pid, and a unique suffix."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class _NameQueue:
    """FIFO waiters for one environment name."""

    def __init__(self) -> None:
        self.cond = threading.Condition()
        self.waiters: deque[object] = deque()
        self.held = False
        # Callers holding, waiting on, or inspecting this queue; guarded
        # by EnvironmentLocks._mutex
        self.users = 0


class LeaseHandle:
    """Proof that the caller holds an environment's lock."""

    def __init__(self, locks: EnvironmentLocks, lease: Lease):
        self._locks = locks
        self.lease = lease
        self.lost = False

    @property
    def name(self) -> str:
        return self.lease.name

    @property
    def holder(self) -> str:
        return self.lease.holder

    def renew(self) -> bool:
        """Push the lease expiry forward. False (and logged) if it was lost."""
        renewed = self._locks.store.renew_lease(
            self.name, self.holder, self._locks.lease_ttl, self._locks.clock()
        )
        if renewed is None:
            if not self.lost:
                logger.error("Lost lease on '%s' (holder %s)", self.name, self.holder)
            self.lost = True
            return False
        self.lease = renewed
        return True


class EnvironmentLocks:
    """Hands out per-environment locks.

    Args:
        store: Where leases live.
        lease_ttl: Seconds a lease stays valid without renewal.
        poll_interval: Seconds between attempts on a lease held elsewhere.
        clock: UTC time source (injectable for tests).
    """

    def __init__(
        self,
        store: EnvironmentStore,
        lease_ttl: float = 900.0,
        poll_interval: float = 0.2,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.lease_ttl = lease_ttl
        self.poll_interval = poll_interval
        self.clock = clock
        self._queues: dict[str, _NameQueue] = {}
        self._mutex = threading.Lock()

    def _checkout(self, name: str) -> _NameQueue:
        with self._mutex:
            queue = self._queues.get(name)
            if queue is None:
                queue = self._queues[name] = _NameQueue()
            queue.users += 1
            return queue

    def _checkin(self, name: str, queue: _NameQueue) -> None:
        """Drop the queue once nobody holds, awaits or inspects it."""
        with self._mutex:
            queue.users -= 1
            if queue.users == 0 and self._queues.get(name) is queue:
                del self._queues[name]

    def is_busy(self, name: str) -> bool:
        """Whether anyone (here or elsewhere) currently holds or awaits the lock."""
        queue = self._checkout(name)
        try:
            with queue.cond:
                if queue.held or queue.waiters:
                    return True
        finally:
            self._checkin(name, queue)
        lease = self.store.get_lease(name)
        return lease is not None and not lease.is_expired(self.clock())

    # ── Acquire / release ────────────────────────────────────────

    def _enter_queue(self, name: str, deadline: Deadline, wait: bool) -> bool:
        queue = self._checkout(name)
        try:
            entered = self._wait_turn(queue, name, deadline, wait)
        except BaseException:
            self._checkin(name, queue)
            raise
        if not entered:
            self._checkin(name, queue)
        return entered

    def _wait_turn(self, queue: _NameQueue, name: str, deadline: Deadline, wait: bool) -> bool:
        token = object()
        with queue.cond:
            if not wait and (queue.held or queue.waiters):
                return False
            queue.waiters.append(token)
            try:
                while queue.waiters[0] is not token or queue.held:
                    remaining = deadline.remaining()
                    if remaining is not None and remaining <= 0:
                        raise Timeout(
                            f"Timed out waiting for lock on environment '{name}'",
                            environment=name,
                        )
                    queue.cond.wait(remaining)
                queue.waiters.popleft()
                queue.held = True
            except BaseException:
                if token in queue.waiters:
                    queue.waiters.remove(token)
                    queue.cond.notify_all()
                raise
        return True

    def _leave_queue(self, name: str) -> None:
        with self._mutex:
            queue = self._queues[name]
        with queue.cond:
            queue.held = False
            queue.cond.notify_all()
        self._checkin(name, queue)

    def _take_lease(self, name: str, deadline: Deadline, wait: bool) -> Lease | None:
        holder = new_holder_id()
        while True:
            lease = self.store.acquire_lease(name, holder, self.lease_ttl, self.clock())
            if lease is not None:
                return lease
            if not wait:
                return None
            remaining = deadline.remaining()
            if remaining is not None and remaining <= 0:
                current = self.store.get_lease(name)
                raise Timeout(
                    f"Timed out waiting for lock on environment '{name}'"
                    + (f" (held by {current.holder})" if current else ""),
                    environment=name,
                )
            pause = self.poll_interval if remaining is None else min(self.poll_interval, remaining)
            time.sleep(pause)

    def acquire(
        self,
        name: str,
        timeout: float | None = None,
        wait: bool = True,
    ) -> LeaseHandle | None:
        """Acquire the lock. Returns None only when ``wait=False`` and it is busy.

        Raises:
            Timeout: ``timeout`` seconds passed without getting the lock.
        """
        deadline = Deadline(timeout)
        if not self._enter_queue(name, deadline, wait):
            return None
        try:
            lease = self._take_lease(name, deadline, wait)
        except BaseException:
            self._leave_queue(name)
            raise
        if lease is None:
            self._leave_queue(name)
            return None
        logger.debug("Acquired lock on '%s' (%s)", name, lease.holder)
        return LeaseHandle(self, lease)

    def release(self, handle: LeaseHandle) -> None:
        try:
            self.store.release_lease(handle.name, handle.holder)
        finally:
            self._leave_queue(handle.name)
            logger.debug("Released lock on '%s'", handle.name)

    @contextmanager
    def hold(
        self,
        name: str,
        timeout: float | None = None,
        wait: bool = True,
    ) -> Iterator[LeaseHandle | None]:
        """Context manager: acquire, yield the handle, always release.

        With ``wait=False`` a busy lock yields None instead of blocking.
        """
        handle = self.acquire(name, timeout=timeout, wait=wait)
        if handle is None:
            yield None
            return
        try:
            yield handle
        finally:
            self.release(handle)
