"""Graph algorithms over template dependency edges.

Edges map a node to the nodes it depends on (``node -> [dependency, ...]``),
so a valid creation order lists every dependency before its dependents.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Hashable, Iterable, Iterator, Mapping, Sequence
from typing import TypeVar

from trellis.errors import CircularDependencyError

N = TypeVar("N", bound=Hashable)

_EXHAUSTED = object()


def find_cycle(adjacency: Mapping[N, Iterable[N]]) -> list[N] | None:
    """Return one cycle as ``[a, b, ..., a]`` in edge order, or None for a DAG.

    Depth-first search with an explicit stack (deep chains must not hit the
    recursion limit). Roots are tried in mapping order, so the reported
    cycle is deterministic for a given insertion order.
    """
    visited: set[N] = set()
    for root in adjacency:
        if root in visited:
            continue
        visited.add(root)
        path: list[N] = [root]
        on_path: set[N] = {root}
        stack: list[Iterator[N]] = [iter(adjacency.get(root, ()))]
        while stack:
            nxt = next(stack[-1], _EXHAUSTED)
            if nxt is _EXHAUSTED:
                stack.pop()
                on_path.discard(path.pop())
                continue
            if nxt in on_path:
                start = path.index(nxt)  # type: ignore[arg-type]
                return [*path[start:], nxt]  # type: ignore[list-item]
            if nxt in visited:
                continue
            visited.add(nxt)  # type: ignore[arg-type]
            path.append(nxt)  # type: ignore[arg-type]
            on_path.add(nxt)  # type: ignore[arg-type]
            stack.append(iter(adjacency.get(nxt, ())))  # type: ignore[call-overload]
    return None


def topological_order(nodes: Sequence[N], edges: Mapping[N, Iterable[N]]) -> list[N]:
    """Order ``nodes`` so dependencies come first (Kahn's algorithm).

    Only edges between members of ``nodes`` count. Ties are broken by the
    position in ``nodes``: the ready queue is FIFO and is seeded, and later
    fed, in that order.
    """
    position = {node: i for i, node in enumerate(nodes)}
    dependents: dict[N, list[N]] = {node: [] for node in nodes}
    in_degree: dict[N, int] = dict.fromkeys(nodes, 0)

    for node in nodes:
        for dep in dict.fromkeys(edges.get(node, ())):
            if dep not in position:
                continue
            dependents[dep].append(node)
            in_degree[node] += 1

    queue = deque(node for node in nodes if in_degree[node] == 0)
    ordered: list[N] = []
    while queue:
        node = queue.popleft()
        ordered.append(node)
        for dependent in sorted(dependents[node], key=position.__getitem__):
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)

    if len(ordered) < len(nodes):
        leftover = [node for node in nodes if in_degree[node] > 0]
        remaining = set(leftover)
        sub = {node: [d for d in edges.get(node, ()) if d in remaining] for node in leftover}
        raise CircularDependencyError(find_cycle(sub) or leftover)
    return ordered
