"""
Gateway — typed commands in, structured results out.

Each front end (the click CLI, an embedding program, a future HTTP
layer) builds one of the command models below and hands it to
``dispatch``. Orchestrator errors become a failed ``CommandResult``
with a structured ``error``; anything else propagates.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from envorch.core.errors import OrchestratorError
from envorch.core.services.orchestrator import Orchestrator

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1


# ── Commands ────────────────────────────────────────────────────


class _Command(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class CreateEnvironment(_Command):
    command: Literal["environment:create"] = "environment:create"
    name: str
    cluster: str | None = None
    ttl_seconds: int | None = Field(default=None, gt=0)
    timeout: float | None = None


class GetEnvironment(_Command):
    command: Literal["environment:get"] = "environment:get"
    name: str


class ListEnvironments(_Command):
    command: Literal["environment:list"] = "environment:list"
    cluster: str | None = None
    include_destroyed: bool = False


class DestroyEnvironment(_Command):
    command: Literal["environment:destroy"] = "environment:destroy"
    name: str
    force: bool = False
    auto_approve: bool = False
    timeout: float | None = None


class Deploy(_Command):
    command: Literal["deploy"] = "deploy"
    environment: str
    component_file: Path
    auto_approve: bool = False
    timeout: float | None = None


class DestroyDeployment(_Command):
    command: Literal["destroy"] = "destroy"
    environment: str
    auto_approve: bool = False
    timeout: float | None = None


class ReapExpired(_Command):
    command: Literal["reaper:run"] = "reaper:run"


Command = (
    CreateEnvironment
    | GetEnvironment
    | ListEnvironments
    | DestroyEnvironment
    | Deploy
    | DestroyDeployment
    | ReapExpired
)


# ── Result ──────────────────────────────────────────────────────


class CommandResult(BaseModel):
    """What every command returns; ``to_dict`` is the ``--json`` payload."""

    ok: bool = True
    exit_code: int = EXIT_OK
    message: str = ""
    data: dict[str, Any] = Field(default_factory=dict)
    error: dict[str, Any] | None = None

    @classmethod
    def success(cls, message: str, **data: Any) -> CommandResult:
        return cls(ok=True, exit_code=EXIT_OK, message=message, data=data)

    @classmethod
    def failure(cls, error: OrchestratorError) -> CommandResult:
        return cls(ok=False, exit_code=EXIT_ERROR, message=str(error), error=error.to_dict())

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


# ── Dispatch ────────────────────────────────────────────────────


def dispatch(command: Command, orchestrator: Orchestrator) -> CommandResult:
    """Run one command.

    Raises:
        TypeError: ``command`` is not one of the known variants.
    """
    try:
        return _run(command, orchestrator)
    except OrchestratorError as e:
        logger.debug("%s failed: %s", type(command).__name__, e)
        return CommandResult.failure(e)


def _run(command: Command, orchestrator: Orchestrator) -> CommandResult:
    if isinstance(command, CreateEnvironment):
        env = orchestrator.create_environment(
            command.name, command.cluster, ttl_seconds=command.ttl_seconds, timeout=command.timeout
        )
        return CommandResult.success(
            f"Environment '{env.name}' is {env.state.value} on cluster '{env.cluster}'",
            environment=env.summary(),
        )

    if isinstance(command, GetEnvironment):
        env = orchestrator.get_environment(command.name)
        return CommandResult.success(
            f"Environment '{env.name}' is {env.state.value}",
            environment=env.model_dump(mode="json"),
            summary=env.summary(),
        )

    if isinstance(command, ListEnvironments):
        environments = [
            env.summary()
            for env in orchestrator.list_environments(command.cluster, command.include_destroyed)
        ]
        return CommandResult.success(f"{len(environments)} environment(s)", environments=environments)

    if isinstance(command, DestroyEnvironment):
        result = orchestrator.destroy_environment(
            command.name,
            force=command.force,
            auto_approve=command.auto_approve,
            timeout=command.timeout,
        )
        if result.environment is None:
            message = f"Environment '{command.name}' does not exist, nothing to destroy"
        elif result.applied:
            message = f"Environment '{command.name}' destroyed"
        else:
            message = f"Would destroy environment '{command.name}'"
        return CommandResult.success(message, **result.to_dict())

    if isinstance(command, Deploy):
        result = orchestrator.deploy(
            command.environment,
            command.component_file,
            auto_approve=command.auto_approve,
            timeout=command.timeout,
        )
        total = result.plan.total_actions
        if result.plan.empty:
            message = f"'{command.environment}' is up to date, nothing to do"
        elif result.applied:
            message = f"Applied {total} action(s) to '{command.environment}'"
        else:
            message = f"Plan for '{command.environment}': {total} action(s) (not applied)"
        return CommandResult.success(message, **result.to_dict())

    if isinstance(command, DestroyDeployment):
        result = orchestrator.destroy_deployment(
            command.environment,
            auto_approve=command.auto_approve,
            timeout=command.timeout,
        )
        total = result.plan.total_actions
        if result.plan.empty:
            message = f"Nothing deployed in '{command.environment}'"
        elif result.applied:
            message = f"Removed {total} component(s) from '{command.environment}'"
        else:
            message = f"Would remove {total} component(s) from '{command.environment}'"
        return CommandResult.success(message, **result.to_dict())

    if isinstance(command, ReapExpired):
        report = orchestrator.reap_expired()
        result = CommandResult.success(
            f"Reaped {len(report.destroyed)} of {report.scanned} expired environment(s)",
            **report.to_dict(),
        )
        if not report.ok:
            result.ok = False
            result.exit_code = EXIT_ERROR
        return result

    raise TypeError(f"Unknown command: {type(command).__name__}")
