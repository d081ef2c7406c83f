"""
Orchestrator — the operations the CLI and API gateway expose.

    create_environment   → registry.create
    deploy               → load descriptor → resolve → plan → apply
    destroy_deployment   → plan teardown → apply (environment stays ACTIVE)
    destroy_environment  → registry.destroy
    reap_expired         → one TTL reaper scan

Every validation (descriptor, resolution, lifecycle state) runs before
the first provisioner call. Without ``auto_approve``, deploy and the
destroy operations return the plan they would apply and change nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from envorch.adapters.mock import MockProvisioner
from envorch.adapters.registry import ProvisionerRegistry
from envorch.adapters.shell.command import ShellProvisioner
from envorch.core.config.descriptor_loader import (
    ComponentCatalog,
    discover_components,
    load_descriptor,
)
from envorch.core.config.loader import Settings
from envorch.core.engine.cancellation import CancelToken, Deadline
from envorch.core.engine.executor import ExecutionReport, report_error
from envorch.core.engine.planner import DeploymentPlan, compute_plan, compute_teardown
from envorch.core.errors import HasActiveDeployment, InvalidRequest, InvalidState, NotFound
from envorch.core.models.environment import Environment, LifecycleState
from envorch.core.models.graph import DependencyGraph
from envorch.core.persistence.audit import AuditWriter
from envorch.core.registry.file_store import FileEnvironmentStore
from envorch.core.registry.locks import EnvironmentLocks
from envorch.core.registry.registry import EnvironmentListing, EnvironmentRegistry
from envorch.core.reliability.circuit_breaker import CircuitBreakerRegistry
from envorch.core.services.reaper import ReapReport, TtlReaper
from envorch.core.services.resolver import resolve

logger = logging.getLogger(__name__)


@dataclass
class DeployResult:
    """Outcome of deploy / destroy-style operations.

    ``applied`` is False for a preview (no ``auto_approve``); then
    ``report`` is None and nothing changed.
    """

    environment: Environment | None
    plan: DeploymentPlan
    applied: bool = False
    report: ExecutionReport | None = None
    graph: DependencyGraph | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "environment": self.environment.summary() if self.environment else None,
            "applied": self.applied,
            "plan": self.plan.to_dict(),
            "report": self.report.to_dict() if self.report else None,
            "graph": self.graph.versions() if self.graph else None,
        }


class Orchestrator:
    """Facade over the registry, resolver, planner and reaper."""

    def __init__(
        self,
        registry: EnvironmentRegistry,
        settings: Settings | None = None,
    ):
        self.registry = registry
        self.settings = settings or Settings()

    # ── Environments ─────────────────────────────────────────────

    def create_environment(
        self,
        name: str,
        cluster: str | None = None,
        ttl_seconds: int | None = None,
        timeout: float | None = None,
    ) -> Environment:
        cluster = cluster or self.settings.cluster
        if not cluster:
            raise InvalidRequest("No cluster given: pass --cluster or set ENVORCH_CLUSTER")
        return self.registry.create(name, cluster, ttl_seconds=ttl_seconds, timeout=timeout)

    def get_environment(self, name: str) -> Environment:
        return self.registry.get(name)

    def list_environments(
        self,
        cluster: str | None = None,
        include_destroyed: bool = False,
    ) -> EnvironmentListing:
        return self.registry.list(cluster=cluster, include_destroyed=include_destroyed)

    def destroy_environment(
        self,
        name: str,
        force: bool = False,
        auto_approve: bool = False,
        timeout: float | None = None,
        cancel: CancelToken | None = None,
    ) -> DeployResult:
        """Destroy an environment (preview only without ``auto_approve``)."""
        env = self._live(name)
        if env is None:
            return DeployResult(environment=None, plan=DeploymentPlan(environment=name))
        if env.has_deployment and not force:
            raise HasActiveDeployment(name, sorted(env.deployed))
        plan = compute_teardown(env.deployed, environment=name)
        if not auto_approve:
            return DeployResult(environment=env, plan=plan)

        destroyed = self.registry.destroy(name, force=force, timeout=timeout, cancel=cancel)
        return DeployResult(environment=destroyed, plan=plan, applied=True)

    # ── Deployments ──────────────────────────────────────────────

    def build_catalog(self, component_file: Path) -> ComponentCatalog:
        """Configured catalog directories plus the component file's own directory."""
        dirs = list(self.settings.catalog_paths)
        own_dir = component_file.resolve().parent
        if own_dir not in {d.resolve() for d in dirs}:
            dirs.append(own_dir)
        return discover_components(dirs)

    def deploy(
        self,
        environment: str,
        component_file: Path,
        auto_approve: bool = False,
        timeout: float | None = None,
        cancel: CancelToken | None = None,
    ) -> DeployResult:
        """Deploy a component (and its dependency graph) into an environment.

        Raises:
            NotFound: Unknown environment.
            InvalidState: The environment is not ACTIVE.
            DescriptorError, CyclicDependency, VersionConflict,
            ComponentNotFound: Before anything is changed.
            PartialFailure, Timeout, Cancelled: The plan stopped part-way;
                the environment is marked degraded.
        """
        deadline = Deadline(timeout if timeout is not None else self.settings.deploy_timeout)
        self._require_active(self.registry.get(environment), "deploy")

        component_file = Path(component_file)

        # Queue first so deploys to one environment run in submission order
        with self.registry.lock(environment, timeout=deadline.remaining()) as handle:
            root = load_descriptor(component_file)
            graph = resolve(root, self.build_catalog(component_file))
            env = self.registry.get(environment)
            self._require_active(env, "deploy")
            plan = compute_plan(env.deployed, graph, environment=environment)
            logger.info("Plan for %s in '%s': %d action(s)", root.key, environment, plan.total_actions)

            if not auto_approve:
                return DeployResult(environment=env, plan=plan, graph=graph)

            report = self.registry.apply_plan(env, plan, handle, cancel=cancel, deadline=deadline)
            self.registry.audit_report("deploy", env, report)
            if not report.complete:
                raise report_error(report)

            env.transition(LifecycleState.ACTIVE, self.registry.clock())
            self.registry.save(env)
            return DeployResult(environment=env, plan=plan, applied=True, report=report, graph=graph)

    def destroy_deployment(
        self,
        environment: str,
        auto_approve: bool = False,
        timeout: float | None = None,
        cancel: CancelToken | None = None,
    ) -> DeployResult:
        """Tear down every deployed component; the environment stays ACTIVE."""
        deadline = Deadline(timeout if timeout is not None else self.settings.deploy_timeout)

        with self.registry.lock(environment, timeout=deadline.remaining()) as handle:
            env = self.registry.get(environment)
            self._require_active(env, "destroy deployment")
            plan = compute_teardown(env.deployed, environment=environment)

            if not auto_approve:
                return DeployResult(environment=env, plan=plan)

            report = self.registry.apply_plan(env, plan, handle, cancel=cancel, deadline=deadline)
            self.registry.audit_report("teardown", env, report)
            if not report.complete:
                raise report_error(report)

            env.transition(LifecycleState.ACTIVE, self.registry.clock())
            self.registry.save(env)
            return DeployResult(environment=env, plan=plan, applied=True, report=report)

    # ── Reaper ───────────────────────────────────────────────────

    def reaper(self) -> TtlReaper:
        return TtlReaper(self.registry)

    def reap_expired(self) -> ReapReport:
        return self.reaper().scan_once()

    # ── Helpers ──────────────────────────────────────────────────

    def _live(self, name: str) -> Environment | None:
        """Live record; None (or NotFound) when absent or DESTROYED."""
        env = self.registry.store.load(name)
        if env is None or not env.is_live:
            if self.registry.destroy_missing_ok:
                return None
            raise NotFound(name)
        return env

    @staticmethod
    def _require_active(env: Environment, operation: str) -> None:
        if env.state != LifecycleState.ACTIVE:
            raise InvalidState(env.name, env.state.value, operation)


def build_provisioners(settings: Settings) -> ProvisionerRegistry:
    """Provisioner registry configured from settings."""
    breakers = CircuitBreakerRegistry(
        default_threshold=settings.circuit_breaker_threshold,
        default_timeout=float(settings.circuit_breaker_timeout),
    )
    provisioners = ProvisionerRegistry(circuit_breakers=breakers)

    config = settings.provisioner
    if config.type == "mock":
        provisioners.register(MockProvisioner())
    else:
        cwd = Path(config.cwd) if config.cwd else settings.root
        if not cwd.is_absolute():
            cwd = settings.root / cwd
        provisioners.register(ShellProvisioner(config.commands, cwd=cwd, timeout=config.timeout))
    return provisioners


def build_orchestrator(settings: Settings) -> Orchestrator:
    """Wire a file-backed orchestrator from settings."""
    store = FileEnvironmentStore(settings.state_path)
    registry = EnvironmentRegistry(
        store=store,
        provisioners=build_provisioners(settings),
        locks=EnvironmentLocks(
            store,
            lease_ttl=float(settings.lease_ttl),
            poll_interval=settings.lock_poll_interval,
        ),
        account=settings.account,
        credentials=settings.credentials(),
        destroy_missing_ok=settings.destroy_missing_ok,
        audit=AuditWriter.in_state_dir(settings.state_path),
    )
    return Orchestrator(registry, settings)
