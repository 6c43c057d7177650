from __future__ import annotations

from pathlib import Path
from typing import Any, ClassVar
from unittest.mock import MagicMock

from edge_provisioner.core import CloudProvider, ResourceInstance
from edge_provisioner.core.state import State
from edge_provisioner.engine import EdgeEngine
from edge_provisioner.engine.errors import TransientProviderError
from edge_provisioner.engine.handlers import EngineContext, ResourceHandler
from edge_provisioner.engine.registry import ResourceTypeRegistry
from edge_provisioner.engine.retry import RetryPolicy
from edge_provisioner.resources.base import Resource


class DummyResource(Resource):
    resource_type: ClassVar[str] = "dummy"
    value: int


def _attrs(resource: DummyResource) -> dict[str, Any]:
    return {
        "id": resource.name,
        "name": resource.name,
        "description": resource.description,
        "labels": dict(resource.labels),
        "value": resource.value,
    }


class InMemoryHandler(ResourceHandler[DummyResource]):
    def __init__(self) -> None:
        self.store: dict[str, dict[str, Any]] = {}
        self.flaky_reads = 0

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        _ = ctx
        if self.flaky_reads:
            self.flaky_reads -= 1
            raise TransientProviderError("backend unavailable", status=503)
        obj = self.store.get(prior.address)
        return dict(obj) if obj is not None else None

    def create(self, ctx: EngineContext, desired: DummyResource) -> dict[str, Any]:
        _ = ctx
        attrs = _attrs(desired)
        self.store[desired.address] = dict(attrs)
        return attrs

    def update(
        self,
        ctx: EngineContext,
        desired: DummyResource,
        prior: ResourceInstance,
    ) -> dict[str, Any]:
        _ = ctx
        _ = prior
        attrs = _attrs(desired)
        self.store[desired.address] = dict(attrs)
        return attrs

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        _ = ctx
        self.store.pop(prior.address, None)


def _engine(tmp_path: Path) -> tuple[EdgeEngine, InMemoryHandler]:
    provider = CloudProvider.from_client(MagicMock())
    registry = ResourceTypeRegistry()
    handler = InMemoryHandler()
    registry.register(DummyResource, handler)
    engine = EdgeEngine(
        provider=provider,
        stack="edge",
        state_path=tmp_path / "state.json",
        registry=registry,
        retry=RetryPolicy(max_attempts=3, base_delay=0.0),
        sleep=lambda _s: None,
    )
    return engine, handler


def test_refresh_updates_state_and_writes_backup(tmp_path: Path) -> None:
    engine, handler = _engine(tmp_path)

    r1 = DummyResource(name="r1", value=1)
    engine.apply(engine.plan([r1]))
    serial = State.load(engine.state_path).serial

    # Simulate drift
    handler.store["dummy.r1"]["value"] = 99
    _, state = engine.refresh(persist=True)

    assert state.serial == serial + 1
    assert state.resources["dummy.r1"].attributes["value"] == 99

    backup_path = Path(str(engine.state_path) + ".backup")
    assert backup_path.exists()

    # Simulate deletion out-of-band
    handler.store.pop("dummy.r1")
    _, state2 = engine.refresh(persist=True)

    assert state2.serial == serial + 2
    assert state2.resources == {}


def test_refresh_without_drift_keeps_serial(tmp_path: Path) -> None:
    engine, _ = _engine(tmp_path)
    engine.apply(engine.plan([DummyResource(name="r1", value=1)]))
    serial = State.load(engine.state_path).serial

    before, after = engine.refresh(persist=True)

    assert after.serial == serial
    assert before.resources == after.resources


def test_refresh_no_persist_does_not_write(tmp_path: Path) -> None:
    engine, handler = _engine(tmp_path)
    r1 = DummyResource(name="r1", value=1)
    engine.apply(engine.plan([r1]))
    serial = State.load(engine.state_path).serial

    handler.store["dummy.r1"]["value"] = 99
    _, state = engine.refresh()  # default: persist=False

    # In-memory state reflects drift
    assert state.resources["dummy.r1"].attributes["value"] == 99
    assert state.serial == serial  # NOT bumped

    # On-disk state unchanged
    on_disk = State.load_or_create(engine.state_path, "edge")
    assert on_disk.resources["dummy.r1"].attributes["value"] == 1
    assert on_disk.serial == serial


def test_refresh_retries_transient_read_errors(tmp_path: Path) -> None:
    engine, handler = _engine(tmp_path)
    engine.apply(engine.plan([DummyResource(name="r1", value=1)]))

    handler.store["dummy.r1"]["value"] = 7
    handler.flaky_reads = 2
    _, state = engine.refresh()

    assert handler.flaky_reads == 0
    assert state.resources["dummy.r1"].attributes["value"] == 7
