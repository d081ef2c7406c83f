"""
Tests for settings loading and orchestrator wiring.
"""

import textwrap
from pathlib import Path

import pytest

from envorch.adapters.shell.command import ShellProvisioner
from envorch.core.config.loader import (
    ConfigError,
    Settings,
    find_settings_file,
    load_settings,
)
from envorch.core.registry.file_store import FileEnvironmentStore
from envorch.core.services.orchestrator import build_orchestrator, build_provisioners


def _write(tmp_path: Path, content: str, name: str = "envorch.yml") -> Path:
    path = tmp_path / name
    path.write_text(textwrap.dedent(content))
    return path


class TestLoadSettings:
    def test_defaults_without_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        settings = load_settings(environ={})
        assert settings.cluster == ""
        assert settings.reaper_interval == 60
        assert settings.state_path == Path.cwd() / ".envorch"
        assert settings.provisioner.type == "shell"

    def test_full_file(self, tmp_path):
        path = _write(tmp_path, """\
            account: acme
            cluster: staging
            state_dir: var/state
            catalog:
              - components
              - /opt/shared
            reaper_interval: 5m
            lease_ttl: 1h
            deploy_timeout: 30m
            provisioner:
              type: shell
              cwd: deploy
              timeout: 120
              commands:
                CREATE: helm install {component}
        """)
        settings = load_settings(path, environ={})

        assert settings.root == tmp_path.resolve()
        assert settings.account == "acme"
        assert settings.reaper_interval == 300
        assert settings.lease_ttl == 3600
        assert settings.deploy_timeout == 1800
        assert settings.state_path == tmp_path.resolve() / "var" / "state"
        assert settings.catalog_paths == [tmp_path.resolve() / "components", Path("/opt/shared")]
        assert settings.provisioner.commands == {"CREATE": "helm install {component}"}

    def test_environment_overrides_file(self, tmp_path):
        path = _write(tmp_path, "cluster: staging\naccount: from-file\n")
        settings = load_settings(
            path,
            environ={
                "ENVORCH_CLUSTER": "production",
                "ENVORCH_ACCOUNT": "ci-bot",
                "ENVORCH_TOKEN": "s3cret",
                "ENVORCH_STATE_DIR": "/tmp/envorch-state",
            },
        )
        assert settings.cluster == "production"
        assert settings.account == "ci-bot"
        assert settings.state_path == Path("/tmp/envorch-state")
        assert settings.credentials() == {"ENVORCH_TOKEN": "s3cret"}
        assert "s3cret" not in repr(settings)
        assert "token" not in settings.model_dump()

    def test_no_token_no_credentials(self):
        assert Settings().credentials() == {}

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_settings(tmp_path / "nope.yml", environ={})

    def test_invalid_yaml(self, tmp_path):
        path = _write(tmp_path, "cluster: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_settings(path, environ={})

    def test_not_a_mapping(self, tmp_path):
        path = _write(tmp_path, "- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_settings(path, environ={})

    def test_invalid_values(self, tmp_path):
        path = _write(tmp_path, "reaper_interval: often\n")
        with pytest.raises(ConfigError, match="Invalid settings"):
            load_settings(path, environ={})

        path = _write(tmp_path, "provisioner:\n  type: terraform\n")
        with pytest.raises(ConfigError):
            load_settings(path, environ={})

    def test_empty_file(self, tmp_path):
        path = _write(tmp_path, "")
        assert load_settings(path, environ={}).cluster == ""

    def test_find_walks_up(self, tmp_path):
        path = _write(tmp_path, "cluster: staging\n")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_settings_file(nested) == path.resolve()


class TestWiring:
    def test_mock_provisioner(self, tmp_path):
        settings = Settings(root=tmp_path, provisioner={"type": "mock"})
        assert build_provisioners(settings).list_provisioners() == ["mock"]

    def test_shell_provisioner_and_breakers(self, tmp_path):
        settings = Settings(
            root=tmp_path,
            circuit_breaker_threshold=2,
            provisioner={"type": "shell", "commands": {"CREATE": "true"}, "cwd": "deploy"},
        )
        provisioners = build_provisioners(settings)
        shell = provisioners.get("shell")
        assert isinstance(shell, ShellProvisioner)
        assert shell._cwd == tmp_path / "deploy"
        assert provisioners.circuit_breakers.default_threshold == 2

    def test_build_orchestrator(self, tmp_path):
        settings = Settings(root=tmp_path, cluster="staging", state_dir="state", provisioner={"type": "mock"})
        orchestrator = build_orchestrator(settings)
        registry = orchestrator.registry

        assert isinstance(registry.store, FileEnvironmentStore)
        assert registry.store.root == tmp_path / "state"
        assert registry.audit.path == tmp_path / "state" / "audit.ndjson"

        orchestrator.create_environment("preview-42")
        assert (tmp_path / "state" / "environments" / "preview-42.json").is_file()
        assert registry.audit.entry_count() == 1
