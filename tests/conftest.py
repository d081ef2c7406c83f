"""
Shared test fixtures and configuration.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import yaml

from envorch.adapters.mock import MockProvisioner
from envorch.adapters.registry import ProvisionerRegistry
from envorch.core.config.loader import Settings
from envorch.core.persistence.audit import AuditWriter
from envorch.core.registry.locks import EnvironmentLocks
from envorch.core.registry.registry import EnvironmentRegistry
from envorch.core.registry.store import InMemoryEnvironmentStore
from envorch.core.services.orchestrator import Orchestrator

EPOCH = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = EPOCH):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now += timedelta(**delta)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tmp_state_dir(tmp_path: Path) -> Path:
    """Return a temporary directory for state files."""
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def mock_provisioner() -> MockProvisioner:
    return MockProvisioner()


@pytest.fixture
def provisioners(mock_provisioner: MockProvisioner) -> ProvisionerRegistry:
    registry = ProvisionerRegistry()
    registry.register(mock_provisioner)
    return registry


@pytest.fixture
def store() -> InMemoryEnvironmentStore:
    return InMemoryEnvironmentStore()


@pytest.fixture
def audit(tmp_state_dir: Path) -> AuditWriter:
    return AuditWriter.in_state_dir(tmp_state_dir)


@pytest.fixture
def registry(store, provisioners, clock, audit) -> EnvironmentRegistry:
    return EnvironmentRegistry(
        store=store,
        provisioners=provisioners,
        locks=EnvironmentLocks(store, lease_ttl=900, poll_interval=0.01, clock=clock),
        account="acme",
        clock=clock,
        audit=audit,
    )


@pytest.fixture
def orchestrator(registry: EnvironmentRegistry, tmp_path: Path) -> Orchestrator:
    return Orchestrator(registry, Settings(root=tmp_path, cluster="staging"))


@pytest.fixture
def components_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "components"
    directory.mkdir()
    return directory


@pytest.fixture
def write_component(components_dir: Path) -> Callable[..., Path]:
    """Write a component descriptor file and return its path.

    ``write_component("api", "1.0.0", deps={"db": "^1.0.0"})``
    """

    def _write(
        name: str,
        version: str = "1.0.0",
        deps: dict[str, str] | None = None,
        image: str | None = None,
        directory: Path | None = None,
        filename: str | None = None,
    ) -> Path:
        data = {
            "name": name,
            "version": version,
            "dependencies": dict(deps or {}),
            "services": {name: {"image": image or f"registry.local/{name}:{version}"}},
        }
        path = (directory or components_dir) / (filename or f"{name}-{version}.yml")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def web_api_db(write_component) -> Path:
    """The web → api → db chain; returns the web descriptor path."""
    write_component("db", "1.0.0")
    write_component("api", "1.0.0", deps={"db": "^1.0.0"})
    return write_component("web", "1.0.0", deps={"api": "^1.0.0"})
