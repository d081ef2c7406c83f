"""
Plan actions and receipts — the execution contract.

A ``PlanAction`` is one step of a deployment plan (create, update or
destroy a component). A ``Receipt`` is what a provisioner returns after
carrying it out. Provisioners NEVER raise: failures come back as a
receipt with ``status="failed"``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class ActionType(StrEnum):
    """What a plan action does to a component."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DESTROY = "DESTROY"


class PlanAction(BaseModel):
    """One ordered step of a deployment plan."""

    model_config = ConfigDict(frozen=True)

    type: ActionType
    component: str
    version: str                             # target version (current one for DESTROY)
    previous_version: str | None = None      # set for UPDATE
    config_digest: str = ""
    dependencies: tuple[str, ...] = ()
    source: str = ""                         # descriptor file, when known

    @property
    def id(self) -> str:
        return f"{self.type.value.lower()}:{self.component}"

    @property
    def label(self) -> str:
        """Human-readable form, e.g. ``CREATE api@1.2.0``."""
        if self.type == ActionType.UPDATE and self.previous_version:
            if self.previous_version != self.version:
                return f"UPDATE {self.component}@{self.previous_version}->{self.version}"
        return f"{self.type.value} {self.component}@{self.version}"

    def __str__(self) -> str:
        return self.label


class Receipt(BaseModel):
    """Result of a provisioner call."""

    provisioner: str
    action_id: str
    status: Literal["ok", "skipped", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    error: str | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the action succeeded."""
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        """Whether the action failed."""
        return self.status == "failed"

    @classmethod
    def success(
        cls,
        provisioner: str,
        action_id: str,
        output: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a success receipt."""
        return cls(
            provisioner=provisioner,
            action_id=action_id,
            status="ok",
            output=output,
            **kwargs,
        )

    @classmethod
    def failure(
        cls,
        provisioner: str,
        action_id: str,
        error: str,
        **kwargs: Any,
    ) -> Receipt:
        """Create a failure receipt."""
        return cls(
            provisioner=provisioner,
            action_id=action_id,
            status="failed",
            error=error,
            **kwargs,
        )

    @classmethod
    def skip(
        cls,
        provisioner: str,
        action_id: str,
        reason: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a skip receipt."""
        return cls(
            provisioner=provisioner,
            action_id=action_id,
            status="skipped",
            output=reason,
            **kwargs,
        )
