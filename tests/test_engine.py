"""
Tests for the deployment planner and plan executor.
"""

import time

import pytest

from envorch.adapters.mock import MockProvisioner
from envorch.adapters.registry import ProvisionerRegistry
from envorch.adapters.shell.command import ShellProvisioner
from envorch.core.engine.cancellation import CancelToken, Deadline
from envorch.core.engine.executor import Target, execute_plan, report_error
from envorch.core.engine.planner import compute_plan, compute_teardown, generate_operation_id
from envorch.core.errors import Cancelled, PartialFailure, Timeout
from envorch.core.models import (
    ActionType,
    DependencyGraph,
    DeployedComponent,
    ResolvedComponent,
)


def _graph(root: str, **nodes: tuple[str, tuple[str, ...]]) -> DependencyGraph:
    """``_graph("web", web=("1.0.0", ("api",)), api=("1.0.0", ()))``"""
    return DependencyGraph(
        root=root,
        nodes={
            name: ResolvedComponent(name=name, version=version, dependencies=deps, config_digest=f"d-{version}")
            for name, (version, deps) in nodes.items()
        },
    )


def _deployed(graph: DependencyGraph) -> dict[str, DeployedComponent]:
    return {
        name: DeployedComponent(
            name=name,
            version=node.version,
            config_digest=node.config_digest,
            dependencies=list(node.dependencies),
        )
        for name, node in graph.nodes.items()
    }


CHAIN = _graph(
    "web",
    web=("1.0.0", ("api",)),
    api=("1.0.0", ("db",)),
    db=("1.0.0", ()),
)


# ── Planner ─────────────────────────────────────────────────────


class TestComputePlan:
    def test_fresh_chain_created_dependencies_first(self):
        plan = compute_plan({}, CHAIN, environment="preview-42")
        assert plan.labels() == ["CREATE db@1.0.0", "CREATE api@1.0.0", "CREATE web@1.0.0"]
        assert plan.environment == "preview-42"
        assert plan.component == "web"
        assert plan.operation_id.startswith("op-")

    def test_unchanged_redeploy_is_empty(self):
        plan = compute_plan(_deployed(CHAIN), CHAIN)
        assert plan.empty
        assert plan.total_actions == 0

    def test_version_change_is_update(self):
        target = _graph(
            "web",
            web=("1.0.0", ("api",)),
            api=("1.1.0", ("db",)),
            db=("1.0.0", ()),
        )
        plan = compute_plan(_deployed(CHAIN), target)
        assert plan.labels() == ["UPDATE api@1.0.0->1.1.0"]
        assert plan.actions[0].previous_version == "1.0.0"

    def test_config_change_is_update(self):
        deployed = _deployed(CHAIN)
        deployed["db"] = deployed["db"].model_copy(update={"config_digest": "changed"})
        plan = compute_plan(deployed, CHAIN)
        assert [(a.type, a.component) for a in plan.actions] == [(ActionType.UPDATE, "db")]

    def test_removed_nodes_destroyed_last_dependents_first(self):
        current = _deployed(
            _graph(
                "web",
                web=("1.0.0", ("api", "cache")),
                api=("1.0.0", ("db",)),
                db=("1.0.0", ()),
                cache=("1.0.0", ("redis",)),
                redis=("1.0.0", ()),
            )
        )
        target = _graph(
            "web",
            web=("2.0.0", ("api",)),
            api=("1.0.0", ("db",)),
            db=("1.0.0", ()),
        )
        plan = compute_plan(current, target)
        assert plan.labels() == [
            "UPDATE web@1.0.0->2.0.0",
            "DESTROY cache@1.0.0",
            "DESTROY redis@1.0.0",
        ]

    def test_partially_applied_plan_only_plans_the_rest(self):
        done = _deployed(_graph("db", db=("1.0.0", ())))
        plan = compute_plan(done, CHAIN)
        assert plan.labels() == ["CREATE api@1.0.0", "CREATE web@1.0.0"]

    def test_teardown_reverse_order(self):
        plan = compute_teardown(_deployed(CHAIN), environment="preview-42")
        assert plan.labels() == ["DESTROY web@1.0.0", "DESTROY api@1.0.0", "DESTROY db@1.0.0"]
        assert plan.component == ""

    def test_teardown_of_nothing(self):
        assert compute_teardown({}).empty

    def test_to_dict(self):
        data = compute_plan({}, CHAIN).to_dict()
        assert [a["component"] for a in data["actions"]] == ["db", "api", "web"]
        assert data["actions"][0]["type"] == "CREATE"

    def test_operation_ids_unique(self):
        assert generate_operation_id() != generate_operation_id()


# ── Executor ────────────────────────────────────────────────────


@pytest.fixture
def mock() -> MockProvisioner:
    return MockProvisioner()


@pytest.fixture
def dispatch(mock: MockProvisioner) -> ProvisionerRegistry:
    registry = ProvisionerRegistry()
    registry.register(mock)
    return registry


TARGET = Target(environment="preview-42", cluster="staging", credentials={"ENVORCH_TOKEN": "s3cret"})


class TestExecutePlan:
    def test_applies_in_order(self, dispatch, mock):
        applied = []
        plan = compute_plan({}, CHAIN)
        report = execute_plan(plan, dispatch, TARGET, on_applied=lambda a, r: applied.append(a.component))

        assert report.complete
        assert report.status == "ok"
        assert mock.labels() == ["CREATE db", "CREATE api", "CREATE web"]
        assert applied == ["db", "api", "web"]
        assert mock.call_log[0].credentials == {"ENVORCH_TOKEN": "s3cret"}

    def test_stops_at_first_failure(self, dispatch, mock):
        mock.set_failure("CREATE:api", "image pull failed")
        report = execute_plan(compute_plan({}, CHAIN), dispatch, TARGET)

        assert [a.component for a in report.applied] == ["db"]
        assert [a.component for a in report.failed] == ["api"]
        assert [a.component for a in report.unapplied] == ["web"]
        assert report.status == "partial"
        assert "image pull failed" in report.error
        assert mock.labels() == ["CREATE db", "CREATE api"]

    def test_first_action_failure_status(self, dispatch, mock):
        mock.set_failure("CREATE:db")
        report = execute_plan(compute_plan({}, CHAIN), dispatch, TARGET)
        assert report.status == "failed"

    def test_cancel_between_actions(self, dispatch, mock):
        cancel = CancelToken()

        def cancel_after_db(ctx):
            if ctx.action.component == "db":
                cancel.cancel("operator abort")

        mock.add_hook(cancel_after_db)
        report = execute_plan(compute_plan({}, CHAIN), dispatch, TARGET, cancel=cancel)

        # The in-flight action completes; nothing after it starts
        assert [a.component for a in report.applied] == ["db"]
        assert [a.component for a in report.unapplied] == ["api", "web"]
        assert report.cancelled
        assert isinstance(report_error(report), Cancelled)

    def test_expired_deadline_runs_nothing(self, dispatch, mock):
        deadline = Deadline(0)
        report = execute_plan(compute_plan({}, CHAIN), dispatch, TARGET, deadline=deadline)
        assert report.timed_out
        assert len(report.unapplied) == 3
        assert mock.call_count == 0
        assert isinstance(report_error(report), Timeout)

    def test_deadline_running_out_during_failed_action(self, dispatch, mock):
        deadline = Deadline(0.2)
        mock.add_hook(lambda ctx: time.sleep(0.3) if ctx.action.component == "api" else None)
        mock.set_failure("CREATE:api", "helm: context deadline exceeded")

        report = execute_plan(compute_plan({}, CHAIN), dispatch, TARGET, deadline=deadline)

        assert report.timed_out
        assert [a.component for a in report.applied] == ["db"]
        assert [a.component for a in report.failed] == ["api"]
        error = report_error(report)
        assert isinstance(error, Timeout)
        assert error.unapplied == ["CREATE web@1.0.0"]

    def test_failure_before_deadline_is_not_a_timeout(self, dispatch, mock):
        mock.set_failure("CREATE:api")
        report = execute_plan(compute_plan({}, CHAIN), dispatch, TARGET, deadline=Deadline(60))
        assert not report.timed_out
        assert type(report_error(report)) is PartialFailure

    def test_slow_shell_command_times_out(self, tmp_path):
        shell = ProvisionerRegistry()
        shell.register(ShellProvisioner({"CREATE": "sleep 5"}, cwd=tmp_path))
        plan = compute_plan({}, _graph("db", db=("1.0.0", ())))

        started = time.monotonic()
        report = execute_plan(plan, shell, TARGET, deadline=Deadline(1.5))

        assert time.monotonic() - started < 4
        assert report.timed_out
        assert isinstance(report_error(report), Timeout)

    def test_failure_error_carries_lists(self, dispatch, mock):
        mock.set_failure("CREATE:web")
        report = execute_plan(compute_plan({}, CHAIN), dispatch, TARGET)
        error = report_error(report)

        assert type(error) is PartialFailure
        assert error.applied == ["CREATE db@1.0.0", "CREATE api@1.0.0"]
        assert error.failed == ["CREATE web@1.0.0"]
        assert error.unapplied == []
        assert error.to_dict()["environment"] == "preview-42"

    def test_report_to_dict(self, dispatch):
        data = execute_plan(compute_plan({}, CHAIN), dispatch, TARGET).to_dict()
        assert data["status"] == "ok"
        assert data["applied"] == ["CREATE db@1.0.0", "CREATE api@1.0.0", "CREATE web@1.0.0"]
        assert len(data["receipts"]) == 3
