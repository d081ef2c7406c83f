"""
File store — environment records as JSON files, leases as lock files.

Layout under the state directory::

    environments/<name>.json    one record per environment
    leases/<name>.json          present while an operation holds the lease

Record writes are atomic (write to temp file, then rename) so a crash
mid-write never corrupts a record and readers always see a whole one.
Lease files are created with ``O_EXCL``; an expired lease is broken by
renaming it aside, which only one contender can win.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import time
import uuid
from datetime import datetime, timedelta
from pathlib import Path

from pydantic import ValidationError

from envorch.core.errors import CorruptRecord
from envorch.core.models.environment import Environment, Lease
from envorch.core.registry.store import EnvironmentStore

logger = logging.getLogger(__name__)

RECORDS_DIR = "environments"
LEASES_DIR = "leases"

# Seconds an unreadable (half-written) lease file is still treated as held
UNREADABLE_LEASE_GRACE = 5.0


def _atomic_write(path: Path, content: str) -> None:
    """Write-to-temp-then-rename in the target directory."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".state_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp, path)
    except Exception:
        tmp.unlink(missing_ok=True)
        raise


class FileEnvironmentStore(EnvironmentStore):
    """Durable store rooted at a state directory."""

    def __init__(self, state_dir: Path):
        self._root = state_dir
        self._records = state_dir / RECORDS_DIR
        self._leases = state_dir / LEASES_DIR
        self._mutex = threading.Lock()

    @property
    def root(self) -> Path:
        return self._root

    def _record_path(self, name: str) -> Path:
        return self._records / f"{name}.json"

    def _lease_path(self, name: str) -> Path:
        return self._leases / f"{name}.json"

    # ── Records ──────────────────────────────────────────────────

    def load(self, name: str) -> Environment | None:
        path = self._record_path(name)
        if not path.is_file():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return Environment.model_validate(data)
        except FileNotFoundError:
            return None
        except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
            # A corrupt record must not be mistaken for "absent"
            logger.error("Corrupt environment record %s: %s", path, e)
            raise CorruptRecord(name, str(path), str(e).partition("\n")[0]) from e

    def save(self, environment: Environment) -> None:
        data = environment.model_dump(mode="json")
        content = json.dumps(data, indent=2, ensure_ascii=False) + "\n"
        try:
            _atomic_write(self._record_path(environment.name), content)
            logger.debug("Saved environment %s (%s)", environment.name, environment.state.value)
        except OSError as e:
            logger.error("Failed to save environment %s: %s", environment.name, e)
            raise

    def names(self) -> list[str]:
        if not self._records.is_dir():
            return []
        return sorted(p.stem for p in self._records.glob("*.json"))

    # ── Leases ───────────────────────────────────────────────────

    def _read_lease(self, path: Path) -> Lease | None:
        try:
            return Lease.model_validate_json(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (ValidationError, ValueError) as e:
            logger.warning("Unreadable lease file %s: %s", path, e)
            return None

    def _break_lease(self, path: Path, seen: Lease | None) -> bool:
        """Move a stale lease file aside. True if the file we saw is gone."""
        aside = path.with_name(f".{path.stem}.{uuid.uuid4().hex[:8]}.stale")
        try:
            os.rename(path, aside)
        except FileNotFoundError:
            return True
        broken = self._read_lease(aside)
        if seen is not None and broken is not None and broken.holder != seen.holder:
            # Someone re-acquired between our read and the rename: put it back
            try:
                os.link(aside, path)
            except FileExistsError:
                pass
            aside.unlink(missing_ok=True)
            return False
        aside.unlink(missing_ok=True)
        if seen is not None:
            logger.warning(
                "Broke expired lease on '%s' held by %s (expired %s)",
                seen.name, seen.holder, seen.expires_at.isoformat(),
            )
        return True

    @staticmethod
    def _recently_created(path: Path) -> bool:
        try:
            return time.time() - path.stat().st_mtime < UNREADABLE_LEASE_GRACE
        except FileNotFoundError:
            return False

    def acquire_lease(self, name: str, holder: str, ttl: float, now: datetime) -> Lease | None:
        path = self._lease_path(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        lease = Lease(
            name=name,
            holder=holder,
            acquired_at=now,
            expires_at=now + timedelta(seconds=ttl),
        )

        with self._mutex:
            for _ in range(3):
                try:
                    fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
                except FileExistsError:
                    existing = self._read_lease(path)
                    if existing is not None and not existing.is_expired(now):
                        return None
                    if existing is None and self._recently_created(path):
                        # Another process is still writing its lease
                        return None
                    if not self._break_lease(path, existing):
                        return None
                    continue
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(lease.model_dump_json())
                return lease
        return None

    def renew_lease(self, name: str, holder: str, ttl: float, now: datetime) -> Lease | None:
        path = self._lease_path(name)
        with self._mutex:
            current = self._read_lease(path)
            if current is None or current.holder != holder:
                return None
            current.expires_at = now + timedelta(seconds=ttl)
            _atomic_write(path, current.model_dump_json())
            return current

    def release_lease(self, name: str, holder: str) -> None:
        path = self._lease_path(name)
        with self._mutex:
            current = self._read_lease(path)
            if current is not None and current.holder == holder:
                path.unlink(missing_ok=True)

    def get_lease(self, name: str) -> Lease | None:
        return self._read_lease(self._lease_path(name))

    def describe(self) -> str:
        return f"file:{self._root}"
