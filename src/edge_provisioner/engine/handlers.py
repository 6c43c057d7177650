"""What the engine expects from a per-type handler, and what it hands them."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from edge_provisioner.resources.base import Resource

if TYPE_CHECKING:
    from collections.abc import Mapping

    from edge_provisioner.core.provider import CloudProvider
    from edge_provisioner.core.state import ResourceInstance, State

R = TypeVar("R", bound=Resource)


@dataclass(frozen=True)
class EngineContext:
    provider: CloudProvider
    stack: str


class PlanContext:
    """Every address the plan can see: declared resources over applied ones.

    A declared resource shadows the state entry at the same address, so
    cross-resource checks see the configuration about to be applied.
    """

    def __init__(self, all_desired: Mapping[str, Resource], state: State) -> None:
        self._known: dict[str, Resource | ResourceInstance] = {**state.resources, **all_desired}

    def find(self, name: str, *resource_types: str) -> list[Resource | ResourceInstance]:
        """Resources named *name*; any type when *resource_types* is empty."""
        wanted = set(resource_types)
        return [
            item
            for item in self._known.values()
            if item.name == name and (not wanted or item.resource_type in wanted)
        ]


class ResourceHandler(Generic[R]):
    """Turns one resource type into provider calls.

    ``read``/``create``/``update``/``delete`` must be overridden. The two
    validation hooks return error strings and accept everything by default:
    ``validate`` sees one resource, ``validate_plan`` also gets a
    :class:`PlanContext` for checks that span resources. ``create`` and
    ``update`` return the attributes to record in state, provider outputs
    included. ``read`` returns None once the object is gone.
    """

    def validate(self, ctx: EngineContext, desired: R) -> list[str]:
        _ = ctx, desired
        return []

    def validate_plan(self, ctx: EngineContext, desired: R, plan_ctx: PlanContext) -> list[str]:
        _ = ctx, desired, plan_ctx
        return []

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        raise NotImplementedError(f"{type(self).__name__}.read")

    def create(self, ctx: EngineContext, desired: R) -> dict[str, Any]:
        raise NotImplementedError(f"{type(self).__name__}.create")

    def update(self, ctx: EngineContext, desired: R, prior: ResourceInstance) -> dict[str, Any]:
        raise NotImplementedError(f"{type(self).__name__}.update")

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        raise NotImplementedError(f"{type(self).__name__}.delete")
