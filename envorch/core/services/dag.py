"""
DAG utilities (pure).

Ordering and validation helpers for component dependency graphs.
Graphs are plain adjacency maps ``{node: [dependencies...]}``.
No I/O.
"""

from __future__ import annotations


def topological_order(edges: dict[str, list[str]], strict: bool = True) -> list[str]:
    """Order nodes so every node comes after all of its dependencies.

    Ready nodes are taken in name order, so the result is deterministic.
    Dependencies that are not nodes of the map are ignored.

    Args:
        edges: Adjacency map node → dependencies.
        strict: Raise ``ValueError`` when a cycle leaves nodes unordered.
            With ``strict=False`` the partial order is returned.
    """
    in_degree: dict[str, int] = {node: 0 for node in edges}
    dependents: dict[str, list[str]] = {node: [] for node in edges}
    for node, deps in edges.items():
        for dep in set(deps):
            if dep not in edges:
                continue
            in_degree[node] += 1
            dependents[dep].append(node)

    ready = sorted(node for node, deg in in_degree.items() if deg == 0)
    order: list[str] = []
    while ready:
        node = ready.pop(0)
        order.append(node)
        released = []
        for successor in dependents[node]:
            in_degree[successor] -= 1
            if in_degree[successor] == 0:
                released.append(successor)
        if released:
            ready = sorted(ready + released)

    if strict and len(order) < len(edges):
        stuck = sorted(set(edges) - set(order))
        raise ValueError(f"Dependency cycle among: {', '.join(stuck)}")
    return order


def reverse_topological_order(edges: dict[str, list[str]]) -> list[str]:
    """Dependents before dependencies (teardown order)."""
    return list(reversed(topological_order(edges)))
