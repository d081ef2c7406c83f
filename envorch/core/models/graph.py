"""
Dependency graph — the resolver's output.

Nodes are keyed by component name; every node carries exactly one
concrete version. The graph is frozen once built.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from envorch.core.services.dag import reverse_topological_order, topological_order


class ResolvedComponent(BaseModel):
    """A component pinned to the single version that satisfies all constraints."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    dependencies: tuple[str, ...] = ()
    constraints: tuple[str, ...] = ()   # incoming constraints this version satisfied
    config_digest: str = ""
    source: str = ""

    @property
    def key(self) -> str:
        return f"{self.name}@{self.version}"


class DependencyGraph(BaseModel):
    """Acyclic graph of resolved components rooted at the deployed component."""

    model_config = ConfigDict(frozen=True)

    root: str = ""
    nodes: dict[str, ResolvedComponent] = Field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, name: object) -> bool:
        return name in self.nodes

    def get(self, name: str) -> ResolvedComponent | None:
        return self.nodes.get(name)

    def edges(self) -> dict[str, list[str]]:
        """Adjacency map: component → the components it depends on."""
        return {name: list(node.dependencies) for name, node in self.nodes.items()}

    def creation_order(self) -> list[str]:
        """Dependencies before dependents."""
        return topological_order(self.edges())

    def teardown_order(self) -> list[str]:
        """Dependents before dependencies."""
        return reverse_topological_order(self.edges())

    def versions(self) -> dict[str, str]:
        return {name: node.version for name, node in self.nodes.items()}
