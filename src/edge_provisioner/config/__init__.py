"""Config-driven entry points: load a YAML file, then plan, apply, refresh.

These are the functions the CLI calls; each builds a fresh
:class:`~edge_provisioner.engine.engine.EdgeEngine` from the loaded config.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from edge_provisioner.config.loader import ConfigError, load_config
from edge_provisioner.config.registry import default_registry
from edge_provisioner.config.schema import Config, EngineSettings, ProviderConfig
from edge_provisioner.core.provider import CloudProvider
from edge_provisioner.core.state import State
from edge_provisioner.engine.engine import EdgeEngine, ProgressCallback
from edge_provisioner.engine.types import Action, ResourceChange

if TYPE_CHECKING:
    import threading
    from pathlib import Path

    from edge_provisioner.engine.builder import ResourceGraph
    from edge_provisioner.engine.types import ApplyResult, Plan

__all__ = [
    "Config",
    "ConfigError",
    "EngineSettings",
    "ProviderConfig",
    "State",
    "apply",
    "drift",
    "graph",
    "load",
    "load_config",
    "plan",
    "plan_and_apply",
    "refresh",
    "save_state",
]


def load(path: Path | str) -> Config:
    return load_config(path)


def _engine_from_config(config: Config, *, parallelism: int | None = None) -> EdgeEngine:
    settings = config.engine
    return EdgeEngine(
        provider=CloudProvider(
            backend=config.provider.backend,
            project=config.provider.stack,
            data_dir=config.provider.data_dir,
        ),
        stack=config.provider.stack,
        state_path=config.state_path,
        registry=default_registry(),
        parallelism=parallelism or settings.parallelism,
        retry=settings.retry,
        lock_timeout=settings.lock_timeout,
    )


def plan(config: Config, *, destroy: bool = False, refresh: bool = False) -> Plan:
    return _engine_from_config(config).plan(config.resources, destroy=destroy, refresh=refresh)


def graph(config: Config) -> ResourceGraph:
    """Dependency graph of the declared resources, checked for cycles and dangling refs."""
    return _engine_from_config(config).graph(config.resources)


def apply(
    plan_obj: Plan,
    config: Config,
    *,
    progress: ProgressCallback | None = None,
    parallelism: int | None = None,
    cancel: threading.Event | None = None,
) -> ApplyResult:
    """Execute *plan_obj*; ``parallelism`` overrides ``engine.parallelism`` for this run."""
    engine = _engine_from_config(config, parallelism=parallelism)
    return engine.apply(plan_obj, progress=progress, cancel=cancel)


def plan_and_apply(config: Config, *, destroy: bool = False, refresh: bool = False) -> ApplyResult:
    return apply(plan(config, destroy=destroy, refresh=refresh), config)


def refresh(config: Config) -> tuple[list[ResourceChange], State]:
    """Read live objects without writing state.

    Returns the drift plus the refreshed state; hand the state to
    :func:`save_state` to keep it.
    """
    before, after = _engine_from_config(config).refresh()
    return _drift_changes(before, after), after


def save_state(config: Config, state: State) -> None:
    """Persist a state returned by :func:`refresh`, unless state moved on meanwhile."""
    with _engine_from_config(config).store.session(bootstrap=state) as session:
        if (session.state.lineage, session.state.serial) != (state.lineage, state.serial):
            raise ConfigError("State changed since it was refreshed; refresh again")
        session.state.resources = state.resources
        session.commit()


def drift(config: Config) -> list[ResourceChange]:
    return refresh(config)[0]


def _attribute_diff(old: dict[str, Any], new: dict[str, Any]) -> dict[str, dict[str, Any]]:
    return {
        key: {"from": old.get(key), "to": new.get(key)}
        for key in sorted(old.keys() | new.keys())
        if old.get(key) != new.get(key)
    }


def _drift_changes(before: State, after: State) -> list[ResourceChange]:
    """Live edits show as updates from stored to live; vanished objects as deletes."""
    changes = [
        ResourceChange(
            address=address,
            resource_type=inst.resource_type,
            action=Action.UPDATE,
            prior=dict(old.attributes),
            planned=dict(inst.attributes),
            diff=_attribute_diff(old.attributes, inst.attributes),
        )
        for address, inst in after.resources.items()
        if (old := before.resources.get(address)) is not None
        and old.attributes != inst.attributes
    ]
    changes += [
        ResourceChange(
            address=address,
            resource_type=before.resources[address].resource_type,
            action=Action.DELETE,
            prior=dict(before.resources[address].attributes),
        )
        for address in sorted(before.resources.keys() - after.resources.keys())
    ]
    return changes
