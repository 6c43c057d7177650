"""Maps ``resource_type`` to its declaring model and the handler that applies it."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, NamedTuple

from edge_provisioner.engine.errors import UnknownResourceTypeError

if TYPE_CHECKING:
    from edge_provisioner.engine.handlers import ResourceHandler
    from edge_provisioner.resources.base import Resource


class ResourceTypeRegistration(NamedTuple):
    resource_type: str
    model: type[Resource]
    handler: ResourceHandler[Any]


class ResourceTypeRegistry:
    def __init__(self) -> None:
        self._by_type: dict[str, ResourceTypeRegistration] = {}

    def register(
        self, model: type[Resource], handler: ResourceHandler[Any]
    ) -> ResourceTypeRegistration:
        """Bind *model* and *handler* under the model's ``resource_type`` classvar."""
        name = getattr(model, "resource_type", None)
        if not (isinstance(name, str) and name):
            raise ValueError(f"{model.__name__} has no resource_type classvar")
        if name in self._by_type:
            raise ValueError(f"Resource type {name!r} is already registered")
        entry = ResourceTypeRegistration(name, model, handler)
        self._by_type[name] = entry
        return entry

    def get(self, resource_type: str) -> ResourceTypeRegistration:
        entry = self._by_type.get(resource_type)
        if entry is None:
            raise UnknownResourceTypeError(resource_type)
        return entry

    def __contains__(self, resource_type: object) -> bool:
        return resource_type in self._by_type

    def types(self) -> list[str]:
        return sorted(self._by_type)
