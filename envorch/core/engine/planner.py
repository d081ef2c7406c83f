"""
Deployment planner — diff the deployed graph against the target graph.

Node-by-node comparison keyed by component name:

    target only              → CREATE
    both, version or config  → UPDATE
    current only             → DESTROY

CREATE/UPDATE run in the target graph's dependency order (dependencies
first). DESTROY runs after them, in reverse dependency order of the
current graph (dependents first), so nothing is left pointing at a
removed component.

The diff is against the environment's recorded state, so re-running a
deploy after a partial failure only plans what is still missing.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime

from envorch.core.models.action import ActionType, PlanAction
from envorch.core.models.environment import DeployedComponent
from envorch.core.models.graph import DependencyGraph
from envorch.core.services.dag import reverse_topological_order


@dataclass
class DeploymentPlan:
    """An ordered set of actions. Never persisted."""

    environment: str = ""
    component: str = ""                     # root component, "" for teardown
    actions: list[PlanAction] = field(default_factory=list)
    operation_id: str = ""

    @property
    def total_actions(self) -> int:
        return len(self.actions)

    @property
    def empty(self) -> bool:
        return not self.actions

    def labels(self) -> list[str]:
        return [a.label for a in self.actions]

    def to_dict(self) -> dict:
        return {
            "operation_id": self.operation_id,
            "environment": self.environment,
            "component": self.component,
            "actions": [
                {
                    "type": a.type.value,
                    "component": a.component,
                    "version": a.version,
                    "previous_version": a.previous_version,
                }
                for a in self.actions
            ],
        }


def compute_plan(
    current: dict[str, DeployedComponent],
    target: DependencyGraph,
    environment: str = "",
) -> DeploymentPlan:
    """Compute the ordered plan that turns ``current`` into ``target``."""
    plan = DeploymentPlan(
        environment=environment,
        component=target.root,
        operation_id=generate_operation_id(),
    )

    for name in target.creation_order():
        node = target.nodes[name]
        deployed = current.get(name)
        if deployed is None:
            action_type = ActionType.CREATE
        elif deployed.version != node.version or deployed.config_digest != node.config_digest:
            action_type = ActionType.UPDATE
        else:
            continue
        plan.actions.append(
            PlanAction(
                type=action_type,
                component=name,
                version=node.version,
                previous_version=deployed.version if deployed else None,
                config_digest=node.config_digest,
                dependencies=node.dependencies,
                source=node.source,
            )
        )

    plan.actions.extend(_destroy_actions(current, keep=set(target.nodes)))
    return plan


def compute_teardown(current: dict[str, DeployedComponent], environment: str = "") -> DeploymentPlan:
    """Plan that removes everything deployed (target = empty graph)."""
    return compute_plan(current, DependencyGraph(), environment=environment)


def _destroy_actions(current: dict[str, DeployedComponent], keep: set[str]) -> list[PlanAction]:
    edges = {name: list(c.dependencies) for name, c in current.items()}
    return [
        PlanAction(
            type=ActionType.DESTROY,
            component=name,
            version=current[name].version,
            config_digest=current[name].config_digest,
            dependencies=tuple(current[name].dependencies),
        )
        for name in reverse_topological_order(edges)
        if name not in keep
    ]


def generate_operation_id() -> str:
    """Generate a unique operation ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"op-{now}-{short}"
