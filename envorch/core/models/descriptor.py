"""
Component descriptor — the declarative description of a deployable unit.

Loaded from a YAML file (see ``envorch.core.config.descriptor_loader``).
A descriptor names the component, pins its own version, lists the
components it depends on (by name + version constraint), and defines
the services it runs. Descriptors are frozen: once loaded for a deploy
call they never change.
"""

from __future__ import annotations

import hashlib
import json
import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_NAME_RE = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
_VERSION_RE = re.compile(r"^v?\d+(\.\d+){0,2}$")


class ResourceRequirements(BaseModel):
    """Compute a service asks for."""

    model_config = ConfigDict(frozen=True)

    cpu: str | None = None          # e.g. "250m", "1"
    memory: str | None = None       # e.g. "256Mi"
    replicas: int = Field(default=1, ge=0)


class ServiceInterface(BaseModel):
    """A port a service exposes."""

    model_config = ConfigDict(frozen=True)

    port: int = Field(ge=1, le=65535)
    protocol: str = "http"


class BuildReference(BaseModel):
    """Where to build a service image from (built elsewhere, referenced here)."""

    model_config = ConfigDict(frozen=True)

    context: str = "."
    dockerfile: str | None = None


class ServiceDefinition(BaseModel):
    """One service of a component."""

    model_config = ConfigDict(frozen=True)

    name: str
    image: str | None = None
    build: BuildReference | None = None
    command: tuple[str, ...] = ()
    resources: ResourceRequirements = Field(default_factory=ResourceRequirements)
    interfaces: dict[str, ServiceInterface] = Field(default_factory=dict)
    environment: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _image_or_build(self) -> ServiceDefinition:
        if not self.image and self.build is None:
            raise ValueError(f"service '{self.name}' needs an 'image' or a 'build' reference")
        return self


class DependencyRef(BaseModel):
    """A reference to another component plus the versions acceptable."""

    model_config = ConfigDict(frozen=True)

    name: str
    constraint: str = "*"


class ComponentDescriptor(BaseModel):
    """A parsed component file."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    description: str = ""
    dependencies: tuple[DependencyRef, ...] = ()
    services: tuple[ServiceDefinition, ...] = ()
    source: str = ""                # file the descriptor was loaded from

    @field_validator("name")
    @classmethod
    def _valid_name(cls, value: str) -> str:
        if not _NAME_RE.match(value) or len(value) > 63:
            raise ValueError(
                f"invalid component name '{value}': use lowercase letters, digits and '-'"
            )
        return value

    @field_validator("version")
    @classmethod
    def _valid_version(cls, value: str) -> str:
        value = str(value).strip()
        if not _VERSION_RE.match(value):
            raise ValueError(f"invalid version '{value}': expected MAJOR.MINOR.PATCH")
        return value

    @model_validator(mode="after")
    def _unique_entries(self) -> ComponentDescriptor:
        dep_names = [d.name for d in self.dependencies]
        if len(dep_names) != len(set(dep_names)):
            raise ValueError(f"component '{self.name}' lists a dependency twice")
        if self.name in dep_names:
            raise ValueError(f"component '{self.name}' depends on itself")
        svc_names = [s.name for s in self.services]
        if len(svc_names) != len(set(svc_names)):
            raise ValueError(f"component '{self.name}' defines a service twice")
        return self

    @property
    def key(self) -> str:
        return f"{self.name}@{self.version}"

    def config_digest(self) -> str:
        """Stable hash of everything that changes what gets deployed.

        Two descriptors with the same version but different service
        configuration produce different digests, which the planner
        turns into an UPDATE.
        """
        payload: dict[str, Any] = {
            "services": [s.model_dump(mode="json") for s in self.services],
            "dependencies": sorted(d.name for d in self.dependencies),
        }
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]
