"""
Tests for domain models — validation, lifecycle, serialization.
"""

from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from envorch.core.models import (
    ActionType,
    ComponentDescriptor,
    DependencyGraph,
    DependencyRef,
    Environment,
    LifecycleState,
    PlanAction,
    Receipt,
    ResolvedComponent,
    ServiceDefinition,
)
from envorch.core.models.environment import is_valid_environment_name
from envorch.core.services.dag import reverse_topological_order, topological_order

NOW = datetime(2026, 3, 1, tzinfo=UTC)


def _descriptor(**overrides) -> ComponentDescriptor:
    data = {
        "name": "api",
        "version": "1.0.0",
        "services": [ServiceDefinition(name="api", image="api:1")],
    }
    data.update(overrides)
    return ComponentDescriptor(**data)


class TestComponentDescriptor:
    def test_minimal(self):
        d = _descriptor()
        assert d.key == "api@1.0.0"
        assert d.dependencies == ()

    def test_invalid_name(self):
        with pytest.raises(ValidationError):
            _descriptor(name="Api_Service")

    def test_invalid_version(self):
        with pytest.raises(ValidationError):
            _descriptor(version="one")

    def test_self_dependency_rejected(self):
        with pytest.raises(ValidationError, match="depends on itself"):
            _descriptor(dependencies=[DependencyRef(name="api")])

    def test_duplicate_dependency_rejected(self):
        with pytest.raises(ValidationError, match="twice"):
            _descriptor(dependencies=[DependencyRef(name="db"), DependencyRef(name="db", constraint="^1")])

    def test_service_needs_image_or_build(self):
        with pytest.raises(ValidationError):
            ServiceDefinition(name="worker")

    def test_digest_tracks_service_config(self):
        a = _descriptor()
        b = _descriptor(services=[ServiceDefinition(name="api", image="api:2")])
        assert a.config_digest() == _descriptor().config_digest()
        assert a.config_digest() != b.config_digest()

    def test_digest_ignores_source(self):
        assert _descriptor(source="a.yml").config_digest() == _descriptor(source="b.yml").config_digest()

    def test_frozen(self):
        d = _descriptor()
        with pytest.raises(ValidationError):
            d.version = "2.0.0"


class TestEnvironment:
    def test_name_rules(self):
        assert is_valid_environment_name("preview-42")
        assert not is_valid_environment_name("Preview")
        assert not is_valid_environment_name("-leading")
        assert not is_valid_environment_name("a" * 64)

    def test_defaults(self):
        env = Environment(name="preview-42", cluster="staging")
        assert env.state == LifecycleState.PENDING
        assert env.deployed == {}
        assert env.expires_at is None
        assert not env.is_expired()

    def test_ttl_expiry(self):
        env = Environment(name="e", cluster="c", created_at=NOW, ttl_seconds=86400)
        assert env.expires_at == NOW + timedelta(days=1)
        assert not env.is_expired(NOW + timedelta(hours=23))
        assert env.is_expired(NOW + timedelta(days=1))

    def test_lifecycle_path(self):
        env = Environment(name="e", cluster="c")
        env.transition(LifecycleState.ACTIVE, NOW)
        env.transition(LifecycleState.ACTIVE, NOW)  # redeploy
        env.transition(LifecycleState.DESTROYING, NOW)
        env.transition(LifecycleState.DESTROYED, NOW)
        assert env.destroyed_at == NOW
        assert not env.is_live

    def test_teardown_cannot_skip_destroying(self):
        env = Environment(name="e", cluster="c", state=LifecycleState.ACTIVE)
        with pytest.raises(ValueError, match="Illegal"):
            env.transition(LifecycleState.DESTROYED)

    def test_destroyed_is_terminal(self):
        env = Environment(name="e", cluster="c", state=LifecycleState.DESTROYED)
        with pytest.raises(ValueError):
            env.transition(LifecycleState.ACTIVE)

    def test_json_roundtrip_keeps_state(self):
        env = Environment(name="e", cluster="c", state=LifecycleState.ACTIVE, ttl_seconds=60)
        restored = Environment.model_validate_json(env.model_dump_json())
        assert restored.state == LifecycleState.ACTIVE
        assert restored.ttl_seconds == 60

    def test_summary(self):
        env = Environment(name="e", cluster="c", created_at=NOW, ttl_seconds=3600)
        summary = env.summary()
        assert summary["state"] == "PENDING"
        assert summary["expires_at"] == (NOW + timedelta(hours=1)).isoformat()


class TestPlanAction:
    def test_labels(self):
        create = PlanAction(type=ActionType.CREATE, component="db", version="1.0.0")
        update = PlanAction(type=ActionType.UPDATE, component="db", version="1.1.0", previous_version="1.0.0")
        assert create.label == "CREATE db@1.0.0"
        assert create.id == "create:db"
        assert update.label == "UPDATE db@1.0.0->1.1.0"

    def test_config_only_update_label(self):
        update = PlanAction(type=ActionType.UPDATE, component="db", version="1.0.0", previous_version="1.0.0")
        assert update.label == "UPDATE db@1.0.0"


class TestReceipt:
    def test_factories(self):
        assert Receipt.success(provisioner="mock", action_id="x").ok
        assert Receipt.failure(provisioner="mock", action_id="x", error="boom").failed
        skipped = Receipt.skip(provisioner="mock", action_id="x", reason="nothing to do")
        assert not skipped.ok and not skipped.failed
        assert skipped.output == "nothing to do"


class TestDependencyGraph:
    def _graph(self) -> DependencyGraph:
        return DependencyGraph(
            root="web",
            nodes={
                "web": ResolvedComponent(name="web", version="1.0.0", dependencies=("api",)),
                "api": ResolvedComponent(name="api", version="1.0.0", dependencies=("db",)),
                "db": ResolvedComponent(name="db", version="1.0.0"),
            },
        )

    def test_orders(self):
        graph = self._graph()
        assert graph.creation_order() == ["db", "api", "web"]
        assert graph.teardown_order() == ["web", "api", "db"]

    def test_lookup(self):
        graph = self._graph()
        assert "api" in graph
        assert len(graph) == 3
        assert graph.get("db").key == "db@1.0.0"
        assert graph.versions() == {"web": "1.0.0", "api": "1.0.0", "db": "1.0.0"}


class TestDag:
    def test_diamond_is_deterministic(self):
        edges = {"app": ["left", "right"], "left": ["base"], "right": ["base"], "base": []}
        assert topological_order(edges) == ["base", "left", "right", "app"]
        assert reverse_topological_order(edges) == ["app", "right", "left", "base"]

    def test_unknown_dependencies_ignored(self):
        assert topological_order({"a": ["external"]}) == ["a"]

    def test_cycle(self):
        with pytest.raises(ValueError, match="cycle"):
            topological_order({"a": ["b"], "b": ["a"]})
        assert topological_order({"a": ["b"], "b": ["a"], "c": []}, strict=False) == ["c"]
