"""
Error taxonomy for the orchestrator.

Every failure a caller can act on has its own exception type. The CLI
maps them to exit codes and structured output; the reaper logs them.

Resolution and validation errors (``CyclicDependency``,
``VersionConflict``, ``DescriptorError``, ``InvalidRequest``) are always
raised before any mutating action runs. Execution errors surface as
``PartialFailure`` (or one of its subclasses) and carry the action lists
a caller needs to retry.
"""

from __future__ import annotations

from typing import Any


class OrchestratorError(Exception):
    """Base class for all orchestrator errors."""

    kind = "error"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": str(self)}


class InvalidRequest(OrchestratorError):
    """A command argument failed validation (bad name, bad duration...)."""

    kind = "invalid_request"


class DescriptorError(OrchestratorError):
    """A component descriptor file is missing, unreadable, or invalid."""

    kind = "descriptor_error"

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid component descriptor {path}: {reason}")

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "path": self.path}


class CorruptRecord(OrchestratorError):
    """A stored environment record cannot be read back."""

    kind = "corrupt_record"

    def __init__(self, name: str, path: str, reason: str):
        self.name = name
        self.path = path
        self.reason = reason
        super().__init__(f"Environment record for '{name}' is unreadable ({path}): {reason}")

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "environment": self.name, "path": self.path}


class NotFound(OrchestratorError):
    """The named environment does not exist."""

    kind = "not_found"

    def __init__(self, name: str, what: str = "Environment"):
        self.name = name
        self.what = what
        super().__init__(f"{what} '{name}' not found")


class ComponentNotFound(NotFound):
    """A dependency cannot be satisfied from the component catalog."""

    kind = "component_not_found"

    def __init__(self, name: str, constraint: str = "*", requested_by: list[str] | None = None):
        self.name = name
        self.what = "Component"
        self.constraint = constraint
        self.requested_by = list(requested_by or [])
        via = " -> ".join(self.requested_by)
        OrchestratorError.__init__(
            self,
            f"No version of component '{name}' satisfies '{constraint}'"
            + (f" (required by {via})" if via else ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "component": self.name,
            "constraint": self.constraint,
            "requested_by": self.requested_by,
        }


class AlreadyExists(OrchestratorError):
    """An environment with this name is already live."""

    kind = "already_exists"

    def __init__(self, name: str, state: str = ""):
        self.name = name
        self.state = state
        detail = f" (state: {state})" if state else ""
        super().__init__(f"Environment '{name}' already exists{detail}")


class InvalidState(OrchestratorError):
    """The operation is not allowed in the environment's lifecycle state."""

    kind = "invalid_state"

    def __init__(self, name: str, state: str, operation: str):
        self.name = name
        self.state = state
        self.operation = operation
        super().__init__(f"Cannot {operation} environment '{name}' in state {state}")


class HasActiveDeployment(OrchestratorError):
    """Destroy without force on an environment that still runs components."""

    kind = "has_active_deployment"

    def __init__(self, name: str, components: list[str]):
        self.name = name
        self.components = list(components)
        super().__init__(
            f"Environment '{name}' still has {len(self.components)} deployed "
            f"component(s): {', '.join(self.components)}. "
            "Destroy the deployment first or pass force."
        )

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "components": self.components}


class CyclicDependency(OrchestratorError):
    """The component dependency graph contains a cycle."""

    kind = "cyclic_dependency"

    def __init__(self, path: list[str]):
        self.path = list(path)
        super().__init__(f"Dependency cycle detected: {' -> '.join(self.path)}")

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "path": self.path}


class VersionConflict(OrchestratorError):
    """Two dependency paths require incompatible versions of one component.

    ``requirements`` is a list of ``(constraint, requesting path)`` pairs.
    """

    kind = "version_conflict"

    def __init__(self, component: str, requirements: list[tuple[str, list[str]]]):
        self.component = component
        self.requirements = [(c, list(p)) for c, p in requirements]
        lines = [
            f"'{constraint}' required by {' -> '.join(path)}"
            for constraint, path in self.requirements
        ]
        super().__init__(
            f"Version conflict for component '{component}': " + "; ".join(lines)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "component": self.component,
            "requirements": [
                {"constraint": c, "requested_by": p} for c, p in self.requirements
            ],
        }


class ProvisioningFailed(OrchestratorError):
    """Environment-level provisioning (namespace setup) failed."""

    kind = "provisioning_failed"

    def __init__(self, name: str, reason: str):
        self.name = name
        self.reason = reason
        super().__init__(f"Provisioning environment '{name}' failed: {reason}")


class PartialFailure(OrchestratorError):
    """A plan stopped part-way. Nothing applied is rolled back.

    The three lists hold action labels such as ``CREATE api@1.2.0``.
    """

    kind = "partial_failure"

    def __init__(
        self,
        message: str,
        applied: list[str] | None = None,
        failed: list[str] | None = None,
        unapplied: list[str] | None = None,
        environment: str = "",
    ):
        self.applied = list(applied or [])
        self.failed = list(failed or [])
        self.unapplied = list(unapplied or [])
        self.environment = environment
        super().__init__(message)

    @classmethod
    def from_report(cls, report: Any, environment: str, message: str = "") -> PartialFailure:
        """Build the error from an ``ExecutionReport``."""
        return cls(
            message or report.summary(),
            applied=[a.label for a in report.applied],
            failed=[a.label for a in report.failed],
            unapplied=[a.label for a in report.unapplied],
            environment=environment,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "environment": self.environment,
            "applied": self.applied,
            "failed": self.failed,
            "unapplied": self.unapplied,
        }


class Timeout(PartialFailure):
    """The caller's deadline passed before the operation finished."""

    kind = "timeout"


class Cancelled(PartialFailure):
    """The caller cancelled an in-flight operation."""

    kind = "cancelled"
