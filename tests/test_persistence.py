"""
Tests for the persistence layer — file-backed environment store and audit ledger.
"""

import json
import os
import time
from datetime import UTC, datetime, timedelta

import pytest

from envorch.core.errors import CorruptRecord
from envorch.core.models import DeployedComponent, Environment, LifecycleState
from envorch.core.persistence.audit import AUDIT_FILE, AuditEntry, AuditWriter
from envorch.core.registry.file_store import FileEnvironmentStore
from envorch.core.registry.registry import EnvironmentListing
from envorch.core.registry.store import InMemoryEnvironmentStore

EPOCH = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def file_store(tmp_state_dir):
    return FileEnvironmentStore(tmp_state_dir)


def _env(name="preview-42", **kwargs) -> Environment:
    return Environment(name=name, cluster="staging", created_at=EPOCH, updated_at=EPOCH, **kwargs)


# ── Records ─────────────────────────────────────────────────────


class TestFileRecords:
    def test_load_missing(self, file_store):
        assert file_store.load("nope") is None
        assert file_store.names() == []

    def test_save_and_load(self, file_store, tmp_state_dir):
        env = _env(ttl_seconds=3600, state=LifecycleState.ACTIVE)
        env.deployed["db"] = DeployedComponent(name="db", version="1.0.0", deployed_at=EPOCH)
        file_store.save(env)

        path = tmp_state_dir / "environments" / "preview-42.json"
        assert path.is_file()
        assert json.loads(path.read_text())["state"] == "ACTIVE"

        loaded = file_store.load("preview-42")
        assert loaded == env
        assert loaded.expires_at == env.expires_at

    def test_names_sorted(self, file_store):
        for name in ["b", "a", "c"]:
            file_store.save(_env(name))
        assert file_store.names() == ["a", "b", "c"]

    def test_atomic_save_leaves_no_temp_files(self, file_store, tmp_state_dir):
        file_store.save(_env())
        file_store.save(_env(ttl_seconds=60))
        leftovers = [p.name for p in (tmp_state_dir / "environments").iterdir() if p.suffix == ".tmp"]
        assert leftovers == []

    def test_corrupt_record_is_an_error(self, file_store, tmp_state_dir):
        records = tmp_state_dir / "environments"
        records.mkdir()
        (records / "broken.json").write_text("{not json")
        with pytest.raises(CorruptRecord) as exc_info:
            file_store.load("broken")
        assert exc_info.value.to_dict()["environment"] == "broken"

    def test_corrupt_record_skipped_by_listing(self, file_store, tmp_state_dir):
        file_store.save(_env())
        (tmp_state_dir / "environments" / "broken.json").write_bytes(b"\xff\xfe")
        assert EnvironmentListing(file_store).names() == ["preview-42"]

    def test_survives_new_instance(self, file_store, tmp_state_dir):
        file_store.save(_env())
        assert FileEnvironmentStore(tmp_state_dir).load("preview-42").cluster == "staging"


# ── Leases ──────────────────────────────────────────────────────


@pytest.fixture(params=["memory", "file"])
def any_store(request, tmp_state_dir):
    if request.param == "memory":
        return InMemoryEnvironmentStore()
    return FileEnvironmentStore(tmp_state_dir)


class TestLeases:
    def test_exclusive(self, any_store):
        assert any_store.acquire_lease("env", "alice", 60, EPOCH) is not None
        assert any_store.acquire_lease("env", "bob", 60, EPOCH) is None
        assert any_store.get_lease("env").holder == "alice"

    def test_names_are_independent(self, any_store):
        assert any_store.acquire_lease("one", "alice", 60, EPOCH) is not None
        assert any_store.acquire_lease("two", "bob", 60, EPOCH) is not None

    def test_release_only_by_holder(self, any_store):
        any_store.acquire_lease("env", "alice", 60, EPOCH)
        any_store.release_lease("env", "bob")
        assert any_store.get_lease("env").holder == "alice"
        any_store.release_lease("env", "alice")
        assert any_store.get_lease("env") is None
        assert any_store.acquire_lease("env", "bob", 60, EPOCH) is not None

    def test_expired_lease_is_taken_over(self, any_store):
        any_store.acquire_lease("env", "crashed", 60, EPOCH)
        later = EPOCH + timedelta(seconds=61)
        lease = any_store.acquire_lease("env", "bob", 60, later)
        assert lease is not None
        assert any_store.get_lease("env").holder == "bob"
        # The old holder can no longer renew
        assert any_store.renew_lease("env", "crashed", 60, later) is None

    def test_renew_extends(self, any_store):
        any_store.acquire_lease("env", "alice", 60, EPOCH)
        later = EPOCH + timedelta(seconds=50)
        renewed = any_store.renew_lease("env", "alice", 60, later)
        assert renewed.expires_at == later + timedelta(seconds=60)
        assert any_store.acquire_lease("env", "bob", 60, EPOCH + timedelta(seconds=70)) is None

    def test_half_written_lease_is_respected(self, file_store, tmp_state_dir):
        leases = tmp_state_dir / "leases"
        leases.mkdir()
        (leases / "env.json").write_text("")
        assert file_store.acquire_lease("env", "bob", 60, EPOCH) is None

    def test_stale_unreadable_lease_is_broken(self, file_store, tmp_state_dir):
        leases = tmp_state_dir / "leases"
        leases.mkdir()
        path = leases / "env.json"
        path.write_text("garbage")
        old = time.time() - 60
        os.utime(path, (old, old))
        assert file_store.acquire_lease("env", "bob", 60, EPOCH) is not None


# ── Audit ledger ────────────────────────────────────────────────


class TestAuditWriter:
    def test_empty(self, audit):
        assert audit.read_all() == []
        assert audit.entry_count() == 0

    def test_append_and_read(self, audit, tmp_state_dir):
        audit.record("create", "preview-42", context={"cluster": "staging"})
        audit.record("deploy", "preview-42", status="partial", actions_failed=["CREATE api@1.0.0"])
        audit.record("create", "preview-7")

        assert audit.path == tmp_state_dir / AUDIT_FILE
        assert audit.entry_count() == 3
        entries = audit.read_all("preview-42")
        assert [e.operation for e in entries] == ["create", "deploy"]
        assert entries[1].actions_failed == ["CREATE api@1.0.0"]
        assert [e.environment for e in audit.read_recent(1)] == ["preview-7"]

    def test_corrupt_lines_skipped(self, audit):
        audit.write(AuditEntry(operation="create", environment="a"))
        with audit.path.open("a") as f:
            f.write("{broken\n")
            f.write(json.dumps({"operation": "destroy", "environment": "a", "errors": "nope"}) + "\n")
        audit.write(AuditEntry(operation="destroy", environment="a"))

        assert [e.operation for e in audit.read_all()] == ["create", "destroy"]

    def test_write_failure_is_not_raised(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        writer = AuditWriter(blocker / "audit.ndjson")
        writer.record("create", "preview-42")
        assert writer.read_all() == []
