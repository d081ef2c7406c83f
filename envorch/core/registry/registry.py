"""
Environment registry — lifecycle state for every environment.

The registry owns environment records and is the only component that
mutates them. Every mutating operation (create, destroy, applying a
plan) runs under the environment's lock; reads (get, list) never lock
and always see a whole record.

Lifecycle operations:
    create   → PENDING, PROVISION at the provisioner, → ACTIVE
    destroy  → DESTROYING, teardown plan, RELEASE, → DESTROYED
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

from envorch.adapters.base import EnvironmentOperation, ExecutionContext
from envorch.adapters.registry import ProvisionerRegistry
from envorch.core.engine.cancellation import CancelToken, Deadline
from envorch.core.engine.executor import ExecutionReport, Target, execute_plan, report_error
from envorch.core.engine.planner import DeploymentPlan, compute_teardown
from envorch.core.errors import (
    AlreadyExists,
    CorruptRecord,
    HasActiveDeployment,
    InvalidRequest,
    NotFound,
    PartialFailure,
    ProvisioningFailed,
)
from envorch.core.models.action import ActionType, PlanAction, Receipt
from envorch.core.models.environment import (
    DeployedComponent,
    DeployRecord,
    Environment,
    LifecycleState,
    is_valid_environment_name,
)
from envorch.core.persistence.audit import AuditWriter
from envorch.core.registry.locks import EnvironmentLocks, LeaseHandle
from envorch.core.registry.store import EnvironmentStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class EnvironmentListing:
    """Lazy, restartable view over the registry.

    Every iteration re-reads the store, so iterating twice can observe
    environments created or destroyed in between.
    """

    def __init__(
        self,
        store: EnvironmentStore,
        cluster: str | None = None,
        state: LifecycleState | None = None,
        include_destroyed: bool = False,
    ):
        self._store = store
        self.cluster = cluster
        self.state = state
        self.include_destroyed = include_destroyed

    def _matches(self, env: Environment) -> bool:
        if self.cluster is not None and env.cluster != self.cluster:
            return False
        if self.state is not None:
            return env.state == self.state
        return self.include_destroyed or env.is_live

    def __iter__(self) -> Iterator[Environment]:
        for name in self._store.names():
            try:
                env = self._store.load(name)
            except CorruptRecord as e:
                logger.warning("Skipping unreadable environment record '%s': %s", name, e)
                continue
            if env is not None and self._matches(env):
                yield env

    def names(self) -> list[str]:
        return [env.name for env in self]

    def __repr__(self) -> str:
        return f"<EnvironmentListing cluster={self.cluster!r} state={self.state!r}>"


class EnvironmentRegistry:
    """Creates, reads, and destroys environments.

    Args:
        store: Record and lease persistence.
        provisioners: Dispatch for environment and component operations.
        locks: Per-environment locks (built over ``store`` if omitted).
        account: Account written into new records and provisioner calls.
        credentials: Passed to provisioners, never persisted.
        destroy_missing_ok: Destroying an absent environment is a no-op.
        clock: UTC time source (injectable for tests).
        audit: Optional lifecycle ledger.
    """

    def __init__(
        self,
        store: EnvironmentStore,
        provisioners: ProvisionerRegistry,
        locks: EnvironmentLocks | None = None,
        account: str = "",
        credentials: dict[str, str] | None = None,
        destroy_missing_ok: bool = False,
        clock: Callable[[], datetime] = _utcnow,
        audit: AuditWriter | None = None,
    ):
        self.store = store
        self.provisioners = provisioners
        self.clock = clock
        self.locks = locks or EnvironmentLocks(store, clock=clock)
        self.account = account
        self.destroy_missing_ok = destroy_missing_ok
        self.audit = audit
        self._credentials = dict(credentials or {})

    # ── Reads ────────────────────────────────────────────────────

    def get(self, name: str) -> Environment:
        """Current record, including a DESTROYED tombstone.

        Raises:
            NotFound: No record with that name.
        """
        env = self.store.load(name)
        if env is None:
            raise NotFound(name)
        return env

    def list(
        self,
        cluster: str | None = None,
        state: LifecycleState | None = None,
        include_destroyed: bool = False,
    ) -> EnvironmentListing:
        return EnvironmentListing(self.store, cluster, state, include_destroyed)

    # ── Locking ──────────────────────────────────────────────────

    @contextmanager
    def lock(
        self,
        name: str,
        timeout: float | None = None,
        wait: bool = True,
    ) -> Iterator[LeaseHandle | None]:
        """Hold the environment's lock for the duration of the block."""
        with self.locks.hold(name, timeout=timeout, wait=wait) as handle:
            yield handle

    # ── Persistence primitives (caller holds the lock) ───────────

    def save(self, env: Environment) -> None:
        env.touch(self.clock())
        self.store.save(env)

    def record_action(self, env: Environment, action: PlanAction) -> None:
        """Reflect one applied action in the deployed graph."""
        if action.type == ActionType.DESTROY:
            env.deployed.pop(action.component, None)
            return
        env.deployed[action.component] = DeployedComponent(
            name=action.component,
            version=action.version,
            config_digest=action.config_digest,
            dependencies=list(action.dependencies),
            deployed_at=self.clock(),
        )

    def record_deploy(
        self,
        env: Environment,
        plan: DeploymentPlan,
        report: ExecutionReport,
        started_at: datetime,
    ) -> None:
        env.degraded = not report.complete
        env.last_deploy = DeployRecord(
            operation_id=plan.operation_id,
            component=plan.component,
            status=report.status,
            started_at=started_at,
            ended_at=self.clock(),
            applied=[a.label for a in report.applied],
            failed=[a.label for a in report.failed],
            unapplied=[a.label for a in report.unapplied],
            error=report.error,
        )

    def apply_plan(
        self,
        env: Environment,
        plan: DeploymentPlan,
        handle: LeaseHandle,
        cancel: CancelToken | None = None,
        deadline: Deadline | None = None,
    ) -> ExecutionReport:
        """Execute a plan, persisting the deployed graph after every action.

        The record is saved (and the lease renewed) as each action lands,
        so a crash or failure mid-plan leaves an accurate deployed graph
        for the next attempt to diff against.
        """
        started_at = self.clock()

        def on_applied(action: PlanAction, receipt: Receipt) -> None:
            self.record_action(env, action)
            self.save(env)
            handle.renew()

        report = execute_plan(
            plan,
            self.provisioners,
            self._target(env),
            cancel=cancel,
            deadline=deadline,
            on_applied=on_applied,
        )
        self.record_deploy(env, plan, report, started_at)
        self.save(env)
        return report

    # ── Create ───────────────────────────────────────────────────

    def create(
        self,
        name: str,
        cluster: str,
        ttl_seconds: int | None = None,
        timeout: float | None = None,
    ) -> Environment:
        """Register an environment and provision it.

        Repeating an identical request against a PENDING environment
        resumes provisioning; a DESTROYED tombstone is replaced.

        Raises:
            InvalidRequest: Bad name, cluster, or TTL.
            AlreadyExists: Name taken (or PENDING with other parameters).
            ProvisioningFailed: The provisioner rejected the environment;
                the record stays PENDING.
            Timeout: The lock could not be acquired in time.
        """
        if not is_valid_environment_name(name):
            raise InvalidRequest(
                f"Invalid environment name '{name}': use lowercase letters, digits "
                f"and '-', at most 63 characters"
            )
        if not cluster:
            raise InvalidRequest("A cluster is required to create an environment")
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise InvalidRequest(f"TTL must be positive, got {ttl_seconds}s")

        deadline = Deadline(timeout)
        with self.lock(name, timeout=deadline.remaining()):
            env = self.store.load(name)
            if env is not None and env.is_live:
                resumable = (
                    env.state == LifecycleState.PENDING
                    and env.cluster == cluster
                    and env.ttl_seconds == ttl_seconds
                )
                if not resumable:
                    raise AlreadyExists(name, env.state.value)
                logger.info("Resuming provisioning of pending environment '%s'", name)
            else:
                now = self.clock()
                env = Environment(
                    name=name,
                    cluster=cluster,
                    account=self.account,
                    ttl_seconds=ttl_seconds,
                    created_at=now,
                    updated_at=now,
                )
                self.store.save(env)
                logger.info("Registered environment '%s' on cluster '%s'", name, cluster)

            receipt = self._environment_operation(env, EnvironmentOperation.PROVISION, deadline)
            if receipt.failed:
                self._audit("create", env, status="failed", errors=[receipt.error or ""])
                raise ProvisioningFailed(name, receipt.error or "unknown error")

            env.transition(LifecycleState.ACTIVE, self.clock())
            self.save(env)
            self._audit("create", env, context={"cluster": cluster, "ttl_seconds": ttl_seconds})
            logger.info("Environment '%s' is ACTIVE", name)
            return env

    # ── Destroy ──────────────────────────────────────────────────

    def destroy(
        self,
        name: str,
        force: bool = False,
        timeout: float | None = None,
        cancel: CancelToken | None = None,
        handle: LeaseHandle | None = None,
    ) -> Environment | None:
        """Tear down and release an environment.

        Pass ``handle`` when the caller already holds the lock.

        Returns:
            The DESTROYED record, or None when the environment was
            absent and ``destroy_missing_ok`` is set.

        Raises:
            NotFound: Absent (or already DESTROYED).
            HasActiveDeployment: Components still deployed and not ``force``.
            PartialFailure: Teardown or release stopped part-way; the
                environment stays DESTROYING.
        """
        deadline = Deadline(timeout)
        if handle is not None:
            return self._destroy_locked(name, force, handle, cancel, deadline)
        with self.lock(name, timeout=deadline.remaining()) as held:
            return self._destroy_locked(name, force, held, cancel, deadline)

    def _destroy_locked(
        self,
        name: str,
        force: bool,
        handle: LeaseHandle,
        cancel: CancelToken | None,
        deadline: Deadline,
    ) -> Environment | None:
        env = self.store.load(name)
        if env is None or not env.is_live:
            if self.destroy_missing_ok:
                logger.info("Environment '%s' already absent, nothing to destroy", name)
                return None
            raise NotFound(name)

        if env.has_deployment and not force:
            raise HasActiveDeployment(name, sorted(env.deployed))

        if env.state != LifecycleState.DESTROYING:
            env.transition(LifecycleState.DESTROYING, self.clock())
            self.save(env)
            logger.info("Environment '%s' is DESTROYING", name)

        plan = compute_teardown(env.deployed, environment=name)
        report = self.apply_plan(env, plan, handle, cancel=cancel, deadline=deadline)
        if not report.complete:
            self.audit_report("destroy", env, report)
            raise report_error(report, f"Teardown of '{name}' stopped: {report.summary()}")

        receipt = self._environment_operation(env, EnvironmentOperation.RELEASE, deadline)
        if receipt.failed:
            self._audit("destroy", env, status="failed", errors=[receipt.error or ""])
            raise PartialFailure(
                f"Releasing environment '{name}' failed: {receipt.error}",
                applied=[a.label for a in report.applied],
                failed=[f"{EnvironmentOperation.RELEASE.value} {name}"],
                environment=name,
            )

        env.transition(LifecycleState.DESTROYED, self.clock())
        self.save(env)
        self.audit_report("destroy", env, report)
        logger.info("Environment '%s' is DESTROYED", name)
        return env

    # ── Helpers ──────────────────────────────────────────────────

    def _target(self, env: Environment) -> Target:
        return Target(
            environment=env.name,
            cluster=env.cluster,
            account=env.account or self.account,
            credentials=self._credentials,
        )

    def _environment_operation(
        self,
        env: Environment,
        operation: EnvironmentOperation,
        deadline: Deadline,
    ) -> Receipt:
        context = ExecutionContext(
            operation=operation.value,
            environment=env.name,
            cluster=env.cluster,
            account=env.account or self.account,
            deadline=deadline.at,
            credentials=self._credentials,
        )
        return self.provisioners.execute(context)

    def _audit(self, operation: str, env: Environment, status: str = "ok", **fields) -> None:
        if self.audit is not None:
            self.audit.record(operation, env.name, status=status, **fields)

    def audit_report(self, operation: str, env: Environment, report: ExecutionReport) -> None:
        component = env.last_deploy.component if env.last_deploy else ""
        self._audit(
            operation,
            env,
            status=report.status,
            operation_id=report.operation_id,
            component=component,
            actions_applied=[a.label for a in report.applied],
            actions_failed=[a.label for a in report.failed],
            actions_unapplied=[a.label for a in report.unapplied],
            errors=[report.error] if report.error else [],
        )
