"""Adapters — provisioner bindings for clusters.

Public re-exports for convenient access.
"""

from envorch.adapters.base import EnvironmentOperation, ExecutionContext, Provisioner
from envorch.adapters.mock import MockProvisioner
from envorch.adapters.registry import ProvisionerRegistry
from envorch.adapters.shell.command import ShellProvisioner

__all__ = [
    "EnvironmentOperation",
    "ExecutionContext",
    "MockProvisioner",
    "Provisioner",
    "ProvisionerRegistry",
    "ShellProvisioner",
]
