"""
Dependency resolver — expand a component into a full deployable graph.

Depth-first expansion from the root descriptor:

    - white/grey/black marking per component name; meeting a grey
      (in-progress) component again is a cycle → ``CyclicDependency``
    - each component is expanded once; version picks are memoized per
      (name, constraint)
    - every component resolves to exactly one version that satisfies
      every constraint any path placed on it

When a later path adds a constraint the already-chosen version fails,
but some other version satisfies all of them, the resolution restarts
with that constraint pinned from the start. If no version satisfies
them all, ``VersionConflict`` lists each constraint and its requesting
path. There is no "highest wins" fallback.

Nothing here has side effects: errors surface before any deploy action.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from envorch.core.config.descriptor_loader import ComponentCatalog
from envorch.core.errors import ComponentNotFound, CyclicDependency, VersionConflict
from envorch.core.models.descriptor import ComponentDescriptor
from envorch.core.models.graph import DependencyGraph, ResolvedComponent
from envorch.core.services.version_constraint import satisfies, satisfies_all

logger = logging.getLogger(__name__)

_WHITE, _GREY, _BLACK = 0, 1, 2

Requirement = tuple[str, list[str]]   # (constraint, requesting path)


class _Restart(Exception):
    """Internal: re-run resolution with an extra pinned constraint."""

    def __init__(self, name: str, requirement: Requirement):
        self.name = name
        self.requirement = requirement
        super().__init__(name)


@dataclass
class _Resolution:
    """One resolution pass. Discarded on restart."""

    root: ComponentDescriptor
    catalog: ComponentCatalog
    pins: dict[str, list[Requirement]]

    color: dict[str, int] = field(default_factory=dict)
    stack: list[str] = field(default_factory=list)
    selected: dict[str, ComponentDescriptor] = field(default_factory=dict)
    requirements: dict[str, list[Requirement]] = field(default_factory=dict)
    memo: dict[tuple[str, str], ComponentDescriptor | None] = field(default_factory=dict)

    def run(self) -> DependencyGraph:
        self.selected[self.root.name] = self.root
        self.requirements[self.root.name] = []
        self._visit(self.root)

        nodes = {
            name: ResolvedComponent(
                name=name,
                version=desc.version,
                dependencies=tuple(sorted(d.name for d in desc.dependencies)),
                constraints=tuple(c for c, _ in self.requirements.get(name, [])),
                config_digest=desc.config_digest(),
                source=desc.source,
            )
            for name, desc in sorted(self.selected.items())
        }
        return DependencyGraph(root=self.root.name, nodes=nodes)

    def _visit(self, descriptor: ComponentDescriptor) -> None:
        self.color[descriptor.name] = _GREY
        self.stack.append(descriptor.name)
        for dep in descriptor.dependencies:
            self._require(dep.name, dep.constraint)
        self.stack.pop()
        self.color[descriptor.name] = _BLACK

    def _require(self, name: str, constraint: str) -> None:
        path = list(self.stack)

        if self.color.get(name, _WHITE) == _GREY:
            start = self.stack.index(name)
            raise CyclicDependency(self.stack[start:] + [name])

        requirement = (constraint, path)
        self.requirements.setdefault(name, []).append(requirement)

        chosen = self.selected.get(name)
        if chosen is not None:
            if satisfies(chosen.version, constraint):
                return
            self._reconcile(name, requirement)
            return

        descriptor = self._pick(name, constraint, path)
        self.selected[name] = descriptor
        logger.debug("Selected %s for '%s' (via %s)", descriptor.key, constraint, " -> ".join(path))
        self._visit(descriptor)

    def _pick(self, name: str, constraint: str, path: list[str]) -> ComponentDescriptor:
        key = (name, constraint)
        if key not in self.memo:
            pinned = [c for c, _ in self.pins.get(name, [])]
            self.memo[key] = next(
                (
                    d for d in self.catalog.versions(name)
                    if satisfies(d.version, constraint) and satisfies_all(d.version, pinned)
                ),
                None,
            )

        descriptor = self.memo[key]
        if descriptor is not None:
            return descriptor

        if not any(satisfies(d.version, constraint) for d in self.catalog.versions(name)):
            raise ComponentNotFound(name, constraint, path)
        raise VersionConflict(name, [(constraint, path)] + self.pins.get(name, []))

    def _reconcile(self, name: str, requirement: Requirement) -> None:
        """The chosen version misses a new constraint: restart or conflict."""
        everything = self.requirements[name] + self.pins.get(name, [])
        constraints = [c for c, _ in everything]

        for candidate in self.catalog.versions(name):
            if satisfies_all(candidate.version, constraints):
                raise _Restart(name, requirement)
        raise VersionConflict(name, _dedupe(everything))


def _dedupe(requirements: list[Requirement]) -> list[Requirement]:
    seen: set[tuple[str, tuple[str, ...]]] = set()
    unique: list[Requirement] = []
    for constraint, path in requirements:
        key = (constraint, tuple(path))
        if key not in seen:
            seen.add(key)
            unique.append((constraint, path))
    return unique


def resolve(root: ComponentDescriptor, catalog: ComponentCatalog) -> DependencyGraph:
    """Resolve ``root`` and everything it depends on.

    Args:
        root: The component being deployed (fixed at its own version).
        catalog: Every available component version.

    Returns:
        A frozen ``DependencyGraph`` with one version per component.

    Raises:
        CyclicDependency: The dependencies form a cycle.
        VersionConflict: Constraints on one component cannot all hold.
        ComponentNotFound: A dependency has no acceptable version at all.
    """
    pins: dict[str, list[Requirement]] = {}

    while True:
        try:
            graph = _Resolution(root=root, catalog=catalog, pins=pins).run()
        except _Restart as restart:
            pinned = pins.setdefault(restart.name, [])
            if restart.requirement[0] in {c for c, _ in pinned}:
                # Pinning again cannot change the outcome
                raise VersionConflict(restart.name, _dedupe(pinned + [restart.requirement])) from None
            pinned.append(restart.requirement)
            logger.debug(
                "Re-resolving with '%s' pinned to '%s'", restart.name, restart.requirement[0]
            )
            continue

        logger.info(
            "Resolved %s: %d components (%s)",
            root.key,
            len(graph),
            ", ".join(node.key for node in graph.nodes.values()),
        )
        return graph
