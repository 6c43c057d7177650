"""Apply operations.

Terraform runs apply by executing a graph of operations (resource nodes + other
nodes). Each operation here lists dependencies on other operations and runs in
three steps:

- ``prepare`` on the coordinating thread: resolve references against the
  state committed so far;
- ``run`` on a worker thread: provider API calls only;
- ``commit`` back on the coordinating thread: record the outcome in state.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

from edge_provisioner.core.state import ResourceInstance, State, compute_attributes_hash
from edge_provisioner.engine.errors import ProviderError, UnresolvedReferenceError
from edge_provisioner.resources.expressions import OutputRef, resolve_expressions

if TYPE_CHECKING:
    from edge_provisioner.engine.handlers import EngineContext, ResourceHandler
    from edge_provisioner.engine.registry import ResourceTypeRegistry
    from edge_provisioner.engine.types import ResourceChange
    from edge_provisioner.resources.base import Resource

T = TypeVar("T")
Retry = Callable[[Callable[[], T]], T]


class Operation(Protocol):
    key: str
    deps: list[str]
    change: ResourceChange | None
    # Failed dependencies do not block this operation (ordering-only edges).
    tolerates_failed_deps: bool

    def prepare(self, *, state: State, registry: ResourceTypeRegistry) -> None: ...

    def run(self, *, ctx: EngineContext, retry: Retry[Any]) -> Any: ...

    def commit(self, *, state: State, outcome: Any) -> bool:
        """Record *outcome* in *state*.

        Returns:
            True if state should be persisted (serial bump + write).
        """
        ...


@dataclass
class BarrierOperation:
    """A no-op node used to enforce ordering between operation phases."""

    key: str
    deps: list[str] = field(default_factory=list)
    change: ResourceChange | None = None
    tolerates_failed_deps: bool = True

    def prepare(self, *, state: State, registry: ResourceTypeRegistry) -> None:
        _ = state, registry

    def run(self, *, ctx: EngineContext, retry: Retry[Any]) -> Any:
        _ = ctx, retry
        return None

    def commit(self, *, state: State, outcome: Any) -> bool:
        _ = state, outcome
        return False


def resolve_desired(change: ResourceChange, state: State, registry: ResourceTypeRegistry) -> Any:
    """Validate the change's desired config with expressions resolved from *state*."""
    if change.desired is None:
        raise ValueError(f"Missing desired config for {change.action.value}: {change.address}")

    def _lookup(ref: OutputRef) -> Any:
        inst = state.resources.get(ref.address)
        if inst is None or ref.attribute not in inst.attributes:
            raise UnresolvedReferenceError([(change.address, str(ref))])
        return inst.attributes[ref.attribute]

    resolved = resolve_expressions(change.desired, _lookup)
    reg = registry.get(change.resource_type)
    desired_obj = reg.model.model_validate(resolved)
    if desired_obj.address != change.address:
        raise ValueError(f"Desired address mismatch: {change.address} != {desired_obj.address}")
    return desired_obj


@dataclass
class CreateOperation:
    key: str
    change: ResourceChange
    deps: list[str] = field(default_factory=list)
    tolerates_failed_deps: bool = False
    _handler: ResourceHandler[Any] | None = field(default=None, repr=False)
    _desired: Resource | None = field(default=None, repr=False)

    def prepare(self, *, state: State, registry: ResourceTypeRegistry) -> None:
        self._handler = registry.get(self.change.resource_type).handler
        self._desired = resolve_desired(self.change, state, registry)

    def run(self, *, ctx: EngineContext, retry: Retry[Any]) -> Any:
        assert self._handler is not None
        assert self._desired is not None
        handler, desired = self._handler, self._desired
        return retry(lambda: handler.create(ctx, desired))

    def commit(self, *, state: State, outcome: Any) -> bool:
        assert self._desired is not None
        now = datetime.now(UTC)
        state.resources[self.key] = ResourceInstance(
            address=self.key,
            resource_type=self.change.resource_type,
            name=self._desired.name,
            attributes=outcome,
            attributes_hash=compute_attributes_hash(outcome),
            dependencies=list(self._desired.depends_on),
            created_at=now,
            updated_at=now,
        )
        return True


@dataclass
class UpdateOperation:
    key: str
    change: ResourceChange
    deps: list[str] = field(default_factory=list)
    tolerates_failed_deps: bool = False
    _handler: ResourceHandler[Any] | None = field(default=None, repr=False)
    _desired: Resource | None = field(default=None, repr=False)
    _prior: ResourceInstance | None = field(default=None, repr=False)

    def prepare(self, *, state: State, registry: ResourceTypeRegistry) -> None:
        self._handler = registry.get(self.change.resource_type).handler
        self._desired = resolve_desired(self.change, state, registry)
        self._prior = state.resources[self.key].model_copy(deep=True)

    def run(self, *, ctx: EngineContext, retry: Retry[Any]) -> Any:
        assert self._handler is not None
        handler, desired, prior = self._handler, self._desired, self._prior
        return retry(lambda: handler.update(ctx, desired, prior))

    def commit(self, *, state: State, outcome: Any) -> bool:
        assert self._desired is not None
        inst = state.resources[self.key]
        inst.attributes = outcome
        inst.attributes_hash = compute_attributes_hash(outcome)
        inst.dependencies = list(self._desired.depends_on)
        inst.updated_at = datetime.now(UTC)
        return True


@dataclass
class DeleteOperation:
    key: str
    change: ResourceChange
    deps: list[str] = field(default_factory=list)
    tolerates_failed_deps: bool = False
    _handler: ResourceHandler[Any] | None = field(default=None, repr=False)
    _prior: ResourceInstance | None = field(default=None, repr=False)

    def prepare(self, *, state: State, registry: ResourceTypeRegistry) -> None:
        self._handler = registry.get(self.change.resource_type).handler
        self._prior = state.resources[self.key].model_copy(deep=True)

    def run(self, *, ctx: EngineContext, retry: Retry[Any]) -> Any:
        assert self._handler is not None
        handler, prior = self._handler, self._prior

        def _delete() -> None:
            try:
                handler.delete(ctx, prior)
            except ProviderError as e:
                # Already gone.
                if e.status != 404:
                    raise

        return retry(_delete)

    def commit(self, *, state: State, outcome: Any) -> bool:
        _ = outcome
        del state.resources[self.key]
        return True
