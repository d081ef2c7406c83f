"""
Audit ledger: append-only lifecycle log.

Every lifecycle operation (create, deploy, teardown, destroy, reap)
appends one entry to an NDJSON (newline-delimited JSON) file under the
state directory. Entries are never modified or deleted.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

AUDIT_FILE = "audit.ndjson"


class AuditEntry(BaseModel):
    """A single audit log entry."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    operation_id: str = ""
    operation: str = ""            # create, deploy, teardown, destroy

    environment: str = ""
    component: str = ""

    # Results
    status: str = ""               # ok, partial, failed
    actions_applied: list[str] = Field(default_factory=list)
    actions_failed: list[str] = Field(default_factory=list)
    actions_unapplied: list[str] = Field(default_factory=list)
    duration_ms: int = 0

    errors: list[str] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)


class AuditWriter:
    """Append-only audit ledger writer.

    A failed write is logged, never raised: the ledger must not turn a
    completed lifecycle operation into a failed one.
    """

    def __init__(self, path: Path):
        self._path = Path(path)
        self._lock = threading.Lock()

    @classmethod
    def in_state_dir(cls, state_dir: Path) -> AuditWriter:
        return cls(Path(state_dir) / AUDIT_FILE)

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> None:
        line = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False) + "\n"
        with self._lock:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with self._path.open("a", encoding="utf-8") as f:
                    f.write(line)
            except OSError as e:
                logger.error("Failed to write audit entry: %s", e)
                return
        logger.debug("Audit entry written: %s/%s", entry.operation, entry.environment)

    def record(self, operation: str, environment: str, status: str = "ok", **fields: Any) -> None:
        """Shorthand for ``write(AuditEntry(...))``."""
        self.write(AuditEntry(operation=operation, environment=environment, status=status, **fields))

    def read_all(self, environment: str | None = None) -> list[AuditEntry]:
        """Read entries oldest first, optionally only for one environment."""
        if not self._path.is_file():
            return []

        entries = []
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entry = AuditEntry.model_validate(json.loads(line))
                    except (json.JSONDecodeError, ValidationError) as e:
                        logger.warning("Skipping corrupt audit entry at line %d: %s", line_num, e)
                        continue
                    if environment is None or entry.environment == environment:
                        entries.append(entry)
        except OSError as e:
            logger.error("Failed to read audit ledger: %s", e)

        return entries

    def read_recent(self, n: int = 20, environment: str | None = None) -> list[AuditEntry]:
        return self.read_all(environment)[-n:]

    def entry_count(self) -> int:
        if not self._path.is_file():
            return 0
        try:
            with self._path.open("r", encoding="utf-8") as f:
                return sum(1 for line in f if line.strip())
        except OSError:
            return 0
