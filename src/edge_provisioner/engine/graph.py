"""Dependency graph utilities."""

from __future__ import annotations

import heapq
from typing import TYPE_CHECKING

from edge_provisioner.engine.errors import CycleError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence


class DependencyGraph:
    """A directed graph where nodes depend on other nodes.

    Node order is significant: among nodes that are ready at the same time,
    the one given first wins. Dependencies on nodes outside the graph are
    ignored.
    """

    def __init__(
        self,
        nodes: Sequence[str],
        dependencies: Mapping[str, Iterable[str]],
    ) -> None:
        self._position: dict[str, int] = {}
        for node in nodes:
            self._position.setdefault(node, len(self._position))
        # node -> filtered deps within graph
        self._deps: dict[str, set[str]] = {}
        self._dependents: dict[str, set[str]] = {n: set() for n in self._position}
        for node in self._position:
            deps = {d for d in dependencies.get(node, []) if d in self._position}
            self._deps[node] = deps
            for dep in deps:
                self._dependents[dep].add(node)

    @property
    def nodes(self) -> list[str]:
        return list(self._position)

    def dependencies_of(self, node: str) -> set[str]:
        return set(self._deps[node])

    def dependents_of(self, node: str) -> set[str]:
        return set(self._dependents[node])

    def transitive_dependents(self, node: str) -> set[str]:
        """Every node that (directly or indirectly) depends on *node*."""
        seen: set[str] = set()
        stack = list(self._dependents[node])
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self._dependents[current])
        return seen

    def topological_order(self) -> list[str]:
        """Return deterministic topo order (declaration order tie-break)."""
        indegree = {n: len(deps) for n, deps in self._deps.items()}

        ready: list[tuple[int, str]] = [
            (self._position[n], n) for n, deg in indegree.items() if deg == 0
        ]
        heapq.heapify(ready)

        order: list[str] = []
        while ready:
            _, node = heapq.heappop(ready)
            order.append(node)
            for child in self._dependents[node]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    heapq.heappush(ready, (self._position[child], child))

        if len(order) != len(self._position):
            placed = set(order)
            remaining = [n for n in self._position if n not in placed]
            raise CycleError(self._cycle_members(remaining))

        return order

    def reverse_topological_order(self) -> list[str]:
        order = self.topological_order()
        order.reverse()
        return order

    def _cycle_members(self, remaining: list[str]) -> list[str]:
        """Narrow the unplaced nodes down to those actually on a cycle.

        Nodes that only depend on a cycle are left over by Kahn's algorithm
        too; peel them off from the dependent side.
        """
        members = set(remaining)
        changed = True
        while changed:
            changed = False
            for node in list(members):
                if not (self._dependents[node] & members):
                    members.discard(node)
                    changed = True
        return [n for n in remaining if n in members]
