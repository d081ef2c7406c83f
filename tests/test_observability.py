"""
Tests for observability — logging setup, secret masking, health checks.
"""

import logging

import pytest

from envorch.core.errors import PartialFailure
from envorch.core.observability.health import (
    DEGRADED,
    HEALTHY,
    UNHEALTHY,
    ComponentHealth,
    SystemHealth,
    check_circuit_breakers,
    check_environments,
    check_provisioners,
    check_system_health,
)
from envorch.core.observability.logging_config import (
    SecretMaskFilter,
    resolve_level,
    setup_logging,
)
from envorch.core.reliability.circuit_breaker import CircuitBreakerRegistry, CircuitState


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


# ── Logging ──────────────────────────────────────────────────────────


class TestResolveLevel:
    def test_default(self):
        assert resolve_level(environ={}) == "WARNING"

    def test_env_var(self):
        assert resolve_level(environ={"ENVORCH_LOG_LEVEL": "info"}) == "INFO"

    def test_flags_win(self):
        env = {"ENVORCH_LOG_LEVEL": "ERROR"}
        assert resolve_level(verbose=True, environ=env) == "INFO"
        assert resolve_level(debug=True, verbose=True, environ=env) == "DEBUG"
        assert resolve_level(quiet=True, environ={"ENVORCH_LOG_LEVEL": "DEBUG"}) == "ERROR"


class TestSetupLogging:
    def test_console_level(self, restore_root_logger):
        setup_logging("INFO", environ={})
        assert restore_root_logger.level == logging.INFO
        assert len(restore_root_logger.handlers) == 1

    def test_unknown_level_falls_back(self, restore_root_logger):
        setup_logging("LOUD", environ={})
        assert restore_root_logger.level == logging.WARNING

    def test_log_file_from_environment(self, restore_root_logger, tmp_path):
        log_file = tmp_path / "envorch.log"
        setup_logging(
            "WARNING",
            environ={
                "ENVORCH_LOG_FILE": str(log_file),
                "ENVORCH_LOG_FILE_LEVEL": "DEBUG",
                "ENVORCH_TOKEN": "s3cret",
            },
        )
        assert restore_root_logger.level == logging.DEBUG

        logging.getLogger("envorch.test").debug("calling with token %s", "s3cret")
        for handler in restore_root_logger.handlers:
            handler.flush()
        content = log_file.read_text()
        assert "calling with token ****" in content
        assert "s3cret" not in content


class TestSecretMaskFilter:
    def _record(self, msg, *args):
        return logging.LogRecord("x", logging.INFO, __file__, 1, msg, args, None)

    def test_masks(self):
        record = self._record("token=%s", "abc123")
        SecretMaskFilter(["abc123"]).filter(record)
        assert record.getMessage() == "token=****"

    def test_no_secrets_untouched(self):
        record = self._record("token=%s", "abc123")
        assert SecretMaskFilter(["", None]).filter(record)
        assert record.args == ("abc123",)


# ── Health ───────────────────────────────────────────────────────────


class TestSystemHealth:
    def test_worst_status_wins(self):
        health = SystemHealth()
        health.add(ComponentHealth(name="a", status=HEALTHY))
        assert health.healthy
        health.add(ComponentHealth(name="b", status=DEGRADED))
        assert health.status == DEGRADED
        health.add(ComponentHealth(name="c", status=UNHEALTHY))
        assert health.status == UNHEALTHY
        assert [c["name"] for c in health.to_dict()["components"]] == ["a", "b", "c"]

    def test_unknown_is_degraded(self):
        health = SystemHealth()
        health.add(ComponentHealth(name="a"))
        assert health.status == DEGRADED


class TestChecks:
    def test_circuit_breakers(self):
        breakers = CircuitBreakerRegistry(default_threshold=1)
        assert check_circuit_breakers(breakers).status == HEALTHY

        breakers.get_or_create("mock")
        assert check_circuit_breakers(breakers).message == "All 1 circuits closed"

        breakers.get_or_create("shell").record_failure()
        assert check_circuit_breakers(breakers).status == UNHEALTHY

        breakers.get_or_create("shell").state = CircuitState.HALF_OPEN
        assert check_circuit_breakers(breakers).status == DEGRADED

    def test_provisioners(self, provisioners, mock_provisioner):
        assert check_provisioners(provisioners).status == HEALTHY
        mock_provisioner._available = False
        assert check_provisioners(provisioners).status == UNHEALTHY

    def test_environments(self, registry, mock_provisioner, clock):
        registry.create("fresh", "staging", ttl_seconds=3600)
        registry.create("stale", "staging", ttl_seconds=60)
        assert check_environments(registry).status == HEALTHY

        clock.advance(minutes=5)
        health = check_environments(registry, grace_seconds=60)
        assert health.status == DEGRADED
        assert health.details["overdue"] == ["stale"]

        # Within the grace period the reaper is simply not due yet
        assert check_environments(registry, grace_seconds=600).status == HEALTHY

        mock_provisioner.set_failure("RELEASE:fresh")
        with pytest.raises(PartialFailure):
            registry.destroy("fresh")
        assert check_environments(registry, grace_seconds=600).details["destroying"] == ["fresh"]

    def test_system(self, registry):
        registry.create("preview-42", "staging")
        health = check_system_health(registry)
        assert health.healthy
        assert [c.name for c in health.components] == ["store", "provisioners", "environments"]
