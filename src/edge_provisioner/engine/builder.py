"""Resource graph construction.

Turns a list of declared resources into nodes and ``(source, target)`` edges,
where the source needs the target first. Edges come from explicit
``depends_on`` addresses, ``Ref``-annotated name fields, and
``${type.name.attr}`` expressions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, NamedTuple

from edge_provisioner.engine.errors import DuplicateAddressError, UnresolvedReferenceError
from edge_provisioner.engine.graph import DependencyGraph

if TYPE_CHECKING:
    from collections.abc import Sequence

    from edge_provisioner.engine.registry import ResourceTypeRegistry
    from edge_provisioner.resources.base import Resource

logger = logging.getLogger(__name__)


class Edge(NamedTuple):
    source: str
    target: str


@dataclass(frozen=True)
class ResourceNode:
    address: str
    resource_type: str
    index: int
    resource: Resource
    references: tuple[str, ...]

    @property
    def attributes(self) -> dict[str, Any]:
        return self.resource.model_dump(
            mode="json", exclude_none=True, exclude={"address", "depends_on"}
        )


@dataclass
class ResourceGraph:
    nodes: dict[str, ResourceNode]
    edges: list[Edge]
    order: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._graph = DependencyGraph(
            list(self.nodes), {a: n.references for a, n in self.nodes.items()}
        )
        # Raises CycleError.
        self.order = self._graph.topological_order()

    def dependencies(self, address: str) -> list[str]:
        return list(self.nodes[address].references)

    def dependents(self, address: str) -> set[str]:
        return self._graph.dependents_of(address)

    def transitive_dependents(self, address: str) -> set[str]:
        return self._graph.transitive_dependents(address)

    def to_dot(self) -> str:
        lines = ["digraph edge {", "  rankdir=LR;"]
        lines.extend(f'  "{addr}";' for addr in self.order)
        lines.extend(f'  "{e.source}" -> "{e.target}";' for e in self.edges)
        lines.append("}")
        return "\n".join(lines)


def _add(deps: list[str], address: str) -> None:
    if address not in deps:
        deps.append(address)


def build_graph(
    resources: Sequence[Resource], registry: ResourceTypeRegistry | None = None
) -> ResourceGraph:
    """Build the resource graph, rejecting dangling references and cycles.

    Raises:
        DuplicateAddressError: two declarations share an address.
        UnknownResourceTypeError: a type is not registered (when *registry* is given).
        UnresolvedReferenceError: any reference has no target.
        CycleError: references form a cycle.
    """
    desired: dict[str, Resource] = {}
    by_name: dict[str, list[str]] = {}
    for r in resources:
        if r.address in desired:
            raise DuplicateAddressError(r.address)
        if registry is not None:
            registry.get(r.resource_type)
        desired[r.address] = r
        by_name.setdefault(r.name, []).append(r.address)

    unresolved: list[tuple[str, str]] = []
    nodes: dict[str, ResourceNode] = {}
    edges: list[Edge] = []
    for index, (addr, r) in enumerate(desired.items()):
        deps: list[str] = []
        for dep in r.depends_on:
            if dep in desired:
                _add(deps, dep)
            else:
                unresolved.append((addr, dep))

        for ref in r.references():
            targets = [
                a for a in by_name.get(ref.name, []) if ref.accepts(desired[a].resource_type)
            ]
            if len(targets) == 1:
                _add(deps, targets[0])
            elif targets:
                unresolved.append((addr, f"{ref} (ambiguous: {', '.join(targets)})"))
            else:
                unresolved.append((addr, str(ref)))

        for expr in r.expressions():
            target_resource = desired.get(expr.address)
            if target_resource is None or not type(target_resource).exposes(expr.attribute):
                unresolved.append((addr, str(expr)))
                continue
            _add(deps, expr.address)

        nodes[addr] = ResourceNode(
            address=addr,
            resource_type=r.resource_type,
            index=index,
            resource=r,
            references=tuple(deps),
        )
        edges.extend(Edge(addr, d) for d in deps)

    if unresolved:
        raise UnresolvedReferenceError(unresolved)

    graph = ResourceGraph(nodes=nodes, edges=edges)
    logger.debug("Built graph: %d nodes, %d edges", len(nodes), len(edges))
    return graph
