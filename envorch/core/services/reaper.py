"""
TTL reaper — destroy environments whose time-to-live has elapsed.

Each scan lists environments and destroys those past their deadline
through the registry's normal destroy path (with ``force``, since an
expired environment is torn down whatever is deployed). Besides
ACTIVE environments the scan retries DESTROYING ones (an earlier
teardown failed) and PENDING ones (a create that never finished).

An environment whose lock is held is skipped this round, so the reaper
never races an explicit command and never destroys anything twice.
Errors are logged and counted; the next scan retries.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from envorch.core.errors import NotFound, OrchestratorError
from envorch.core.models.environment import Environment, LifecycleState
from envorch.core.registry.registry import EnvironmentRegistry
from envorch.core.services.scheduler import PeriodicTask

logger = logging.getLogger(__name__)

REAPABLE_STATES = frozenset({
    LifecycleState.PENDING,
    LifecycleState.ACTIVE,
    LifecycleState.DESTROYING,
})


@dataclass
class ReapReport:
    """Outcome of one scan."""

    scanned: int = 0
    destroyed: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict:
        return {
            "scanned": self.scanned,
            "destroyed": self.destroyed,
            "failed": self.failed,
            "skipped": self.skipped,
        }


class TtlReaper:
    """Finds and destroys expired environments."""

    def __init__(
        self,
        registry: EnvironmentRegistry,
        clock: Callable[[], datetime] | None = None,
    ):
        self.registry = registry
        self.clock = clock or registry.clock

    def expired(self, now: datetime | None = None) -> list[Environment]:
        """Environments past their deadline in a reapable state."""
        now = now or self.clock()
        return [
            env
            for env in self.registry.list()
            if env.state in REAPABLE_STATES and env.is_expired(now)
        ]

    def scan_once(self) -> ReapReport:
        now = self.clock()
        report = ReapReport()
        candidates = self.expired(now)
        report.scanned = len(candidates)

        for env in candidates:
            try:
                self._reap(env.name, now, report)
            except OrchestratorError as e:
                logger.error("Reaper failed to destroy '%s': %s", env.name, e)
                report.failed[env.name] = str(e)
            except Exception as e:
                logger.error("Reaper failed to destroy '%s': %s", env.name, e, exc_info=True)
                report.failed[env.name] = f"Unexpected error: {e}"

        if candidates:
            logger.info(
                "Reaper scan: %d expired, %d destroyed, %d failed, %d skipped",
                report.scanned, len(report.destroyed), len(report.failed), len(report.skipped),
            )
        return report

    def _reap(self, name: str, now: datetime, report: ReapReport) -> None:
        with self.registry.lock(name, wait=False) as handle:
            if handle is None:
                logger.info("Reaper skipping '%s': lock is held", name)
                report.skipped.append(name)
                return

            # Re-check under the lock: it may have been destroyed or recreated
            current = self.registry.store.load(name)
            if current is None or current.state not in REAPABLE_STATES or not current.is_expired(now):
                report.skipped.append(name)
                return

            logger.info("TTL of '%s' elapsed at %s, destroying", name, current.expires_at)
            try:
                self.registry.destroy(name, force=True, handle=handle)
            except NotFound:
                report.skipped.append(name)
                return
        report.destroyed.append(name)

    def as_task(self, interval: float) -> PeriodicTask:
        return PeriodicTask(interval, self.scan_once, name="ttl-reaper")
