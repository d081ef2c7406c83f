"""
Domain models — Pydantic types for the orchestrator.

All models are re-exported here for convenient access:

    from envorch.core.models import Environment, ComponentDescriptor, PlanAction
"""

from envorch.core.models.action import ActionType, PlanAction, Receipt
from envorch.core.models.descriptor import (
    BuildReference,
    ComponentDescriptor,
    DependencyRef,
    ResourceRequirements,
    ServiceDefinition,
    ServiceInterface,
)
from envorch.core.models.environment import (
    DeployedComponent,
    DeployRecord,
    Environment,
    Lease,
    LifecycleState,
)
from envorch.core.models.graph import DependencyGraph, ResolvedComponent

__all__ = [
    # action.py
    "ActionType",
    "BuildReference",
    # descriptor.py
    "ComponentDescriptor",
    # graph.py
    "DependencyGraph",
    "DependencyRef",
    "DeployRecord",
    "DeployedComponent",
    # environment.py
    "Environment",
    "Lease",
    "LifecycleState",
    "PlanAction",
    "Receipt",
    "ResolvedComponent",
    "ResourceRequirements",
    "ServiceDefinition",
    "ServiceInterface",
]
