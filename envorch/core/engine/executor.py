"""
Plan executor — apply a deployment plan action by action.

Flow per action:
    check cancel/deadline → dispatch to provisioner → receipt → on_applied

Execution is strictly sequential and stops at the first failed action.
Nothing is rolled back: already-applied actions stay applied, and the
report lists applied / failed / unapplied actions so the caller can
retry. ``on_applied`` runs after every successful action — the registry
uses it to persist the deployed graph immediately, which is what makes
a retried deploy skip work that already happened.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from envorch.adapters.base import ExecutionContext
from envorch.adapters.registry import ProvisionerRegistry
from envorch.core.engine.cancellation import CancelToken, Deadline
from envorch.core.engine.planner import DeploymentPlan
from envorch.core.errors import Cancelled, PartialFailure, Timeout
from envorch.core.models.action import PlanAction, Receipt

logger = logging.getLogger(__name__)


@dataclass
class Target:
    """Where the plan is applied."""

    environment: str
    cluster: str
    account: str = ""
    credentials: dict[str, str] = field(default_factory=dict, repr=False)


@dataclass
class ExecutionReport:
    """Result of executing a plan."""

    operation_id: str = ""
    environment: str = ""
    applied: list[PlanAction] = field(default_factory=list)
    failed: list[PlanAction] = field(default_factory=list)
    unapplied: list[PlanAction] = field(default_factory=list)
    receipts: list[Receipt] = field(default_factory=list)
    cancelled: bool = False
    timed_out: bool = False
    error: str | None = None

    @property
    def total(self) -> int:
        return len(self.applied) + len(self.failed) + len(self.unapplied)

    @property
    def complete(self) -> bool:
        return not self.failed and not self.unapplied

    @property
    def status(self) -> str:
        if self.complete:
            return "ok"
        if self.applied:
            return "partial"
        return "failed"

    def summary(self) -> str:
        if self.complete:
            return f"Applied {len(self.applied)} action(s) to '{self.environment}'"
        if self.timed_out:
            cause = "deadline exceeded"
        elif self.cancelled:
            cause = "cancelled"
        else:
            cause = self.error or "action failed"
        return (
            f"Plan for '{self.environment}' stopped ({cause}): "
            f"{len(self.applied)} applied, {len(self.failed)} failed, "
            f"{len(self.unapplied)} not applied"
        )

    def to_dict(self) -> dict:
        return {
            "operation_id": self.operation_id,
            "environment": self.environment,
            "status": self.status,
            "applied": [a.label for a in self.applied],
            "failed": [a.label for a in self.failed],
            "unapplied": [a.label for a in self.unapplied],
            "cancelled": self.cancelled,
            "timed_out": self.timed_out,
            "error": self.error,
            "receipts": [r.model_dump(mode="json") for r in self.receipts],
        }


def execute_plan(
    plan: DeploymentPlan,
    provisioners: ProvisionerRegistry,
    target: Target,
    cancel: CancelToken | None = None,
    deadline: Deadline | None = None,
    on_applied: Callable[[PlanAction, Receipt], None] | None = None,
) -> ExecutionReport:
    """Execute all actions of a plan in order.

    Args:
        plan: The plan to apply.
        provisioners: Registry used to dispatch each action.
        target: Environment/cluster the actions apply to.
        cancel: Optional cooperative cancellation token.
        deadline: Optional caller time budget.
        on_applied: Called after each successful action.

    Returns:
        ExecutionReport. Never raises for action failures.
    """
    report = ExecutionReport(operation_id=plan.operation_id, environment=target.environment)
    actions = list(plan.actions)

    for index, action in enumerate(actions):
        if cancel is not None and cancel.cancelled:
            report.cancelled = True
            report.error = cancel.reason
            report.unapplied.extend(actions[index:])
            logger.warning("%s: cancelled before %s", target.environment, action.label)
            break
        if deadline is not None and deadline.expired:
            report.timed_out = True
            report.error = f"deadline of {deadline.seconds}s exceeded"
            report.unapplied.extend(actions[index:])
            logger.warning("%s: deadline exceeded before %s", target.environment, action.label)
            break

        context = ExecutionContext(
            operation=action.type.value,
            environment=target.environment,
            cluster=target.cluster,
            account=target.account,
            action=action,
            deadline=deadline.at if deadline is not None else None,
            credentials=target.credentials,
        )
        receipt = provisioners.execute(context)
        report.receipts.append(receipt)

        if receipt.failed:
            report.failed.append(action)
            report.unapplied.extend(actions[index + 1:])
            report.error = f"{action.label}: {receipt.error}"
            # The provisioner gave up because the caller's budget ran out
            if deadline is not None and deadline.expired:
                report.timed_out = True
            logger.error("✗ %s %s → %s", target.environment, action.label, receipt.error)
            break

        report.applied.append(action)
        logger.info("✓ %s %s (%sms)", target.environment, action.label, receipt.duration_ms)
        if on_applied is not None:
            on_applied(action, receipt)

    return report


def report_error(report: ExecutionReport, message: str = "") -> PartialFailure:
    """The exception a caller raises for an incomplete report."""
    if report.timed_out:
        error_cls: type[PartialFailure] = Timeout
    elif report.cancelled:
        error_cls = Cancelled
    else:
        error_cls = PartialFailure
    return error_cls.from_report(report, report.environment, message)
