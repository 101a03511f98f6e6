"""Stable topological ordering using Kahn's algorithm."""

from __future__ import annotations

import heapq
from collections import defaultdict


class CycleError(ValueError):
    """Raised when a cycle is detected in a directed graph.

    ``nodes`` holds the names that could not be ordered (every node on a
    cycle plus anything downstream of one), in declaration order.
    """

    def __init__(self, message: str, nodes: list[str]) -> None:
        self.nodes = nodes
        super().__init__(message)


def topological_order(
    nodes: list[str],
    edges: dict[str, list[str]],
) -> list[str]:
    """Return *nodes* in dependency order, breaking ties by declaration order.

    Args:
        nodes: All node names, in declaration order.
        edges: Mapping from node → list of nodes it depends on.
               (i.e. edges[A] = [B, C] means A depends on B and C)

    Raises:
        CycleError: If the graph contains a cycle.
    """
    position = {name: i for i, name in enumerate(nodes)}
    in_degree: dict[str, int] = {n: 0 for n in nodes}
    dependents: dict[str, list[str]] = defaultdict(list)

    for node, deps in edges.items():
        for dep in set(deps):
            in_degree[node] += 1
            dependents[dep].append(node)

    ready = [position[n] for n, d in in_degree.items() if d == 0]
    heapq.heapify(ready)
    order: list[str] = []

    while ready:
        node = nodes[heapq.heappop(ready)]
        order.append(node)
        for child in dependents[node]:
            in_degree[child] -= 1
            if in_degree[child] == 0:
                heapq.heappush(ready, position[child])

    if len(order) != len(nodes):
        stuck = [n for n in nodes if in_degree[n] > 0]
        raise CycleError(f"Graph contains a cycle through: {', '.join(stuck)}", stuck)

    return order


def detect_cycle(
    nodes: list[str],
    edges: dict[str, list[str]],
    graph_type: str = "dependency",
) -> None:
    """Raise CycleError if the graph has a cycle.

    Same as topological_order but discards the ordering. The message names
    *graph_type* (e.g. "dependency") and the nodes involved.
    """
    try:
        topological_order(nodes, edges)
    except CycleError as e:
        raise CycleError(
            f"Graph contains a {graph_type} cycle through: {', '.join(e.nodes)}", e.nodes
        ) from None
