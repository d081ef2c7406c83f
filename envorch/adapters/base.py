"""
Provisioner base — the protocol contract between engine and clusters.

A provisioner turns plan actions into real resources (namespaces,
deployments, services). The engine only talks to provisioners through
this protocol, never directly to cluster tooling.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from enum import StrEnum

from pydantic import BaseModel, Field

from envorch.core.models.action import PlanAction, Receipt


class EnvironmentOperation(StrEnum):
    """Environment-level operations (component-level ones are ``ActionType``)."""

    PROVISION = "PROVISION"
    RELEASE = "RELEASE"


class ExecutionContext(BaseModel):
    """Everything a provisioner needs to carry out one operation.

    ``operation`` is an ``ActionType`` value for component actions or an
    ``EnvironmentOperation`` value for environment-level ones.
    """

    operation: str
    environment: str
    cluster: str
    account: str = ""
    action: PlanAction | None = None
    deadline: float | None = None           # time.monotonic() deadline
    credentials: dict[str, str] = Field(default_factory=dict, repr=False, exclude=True)

    @property
    def action_id(self) -> str:
        if self.action is not None:
            return self.action.id
        return f"{self.operation.lower()}:{self.environment}"

    @property
    def remaining_seconds(self) -> float | None:
        """Seconds left before the caller's deadline (None = unbounded)."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())


class Provisioner(ABC):
    """Abstract base class for all provisioners.

    Provisioners perform external side effects and return receipts.
    They NEVER raise exceptions — failures are captured in the Receipt.

    To create a new provisioner:
        1. Subclass Provisioner
        2. Implement name, is_available, validate, execute
        3. Register it in the ProvisionerRegistry
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The provisioner identifier (e.g., 'shell', 'mock')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the underlying tooling is usable. Fast, never raises."""

    @abstractmethod
    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        """Validate that the operation can be carried out.

        Returns:
            (is_valid, error_message). error_message is empty if valid.
        """

    @abstractmethod
    def execute(self, context: ExecutionContext) -> Receipt:
        """Carry out the operation and return a receipt.

        MUST never raise exceptions. All failures are captured
        in the Receipt with status='failed'.
        """

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
