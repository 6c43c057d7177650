"""Reusable resource bundles declared under ``modules:``.

A module is any callable that takes keyword arguments and returns
``list[Resource]``. A typical one wires a serverless endpoint group to a
backend service with an optional CDN policy, so each service in the YAML
is a single ``instances`` entry instead of two hand-written resources.

``call`` is either a bare entry point name in the ``edge_provisioner.modules``
group, or ``package.module:function``. The latter is imported normally and,
failing that, loaded from a ``.py`` file (or package) next to the config.
"""

from __future__ import annotations

import importlib
import importlib.metadata
import importlib.util
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from edge_provisioner.resources.base import Resource

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from types import ModuleType

    ModuleFn = Callable[..., list[Resource]]

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "edge_provisioner.modules"


class ModuleExpansionError(Exception):
    pass


class ModuleSpec(BaseModel):
    """``call`` plus either named ``instances`` or a single ``with`` block."""

    model_config = ConfigDict(extra="forbid")

    call: str
    instances: dict[str, dict[str, Any]] | None = None
    with_: dict[str, Any] | None = Field(default=None, alias="with")

    @model_validator(mode="after")
    def _one_of_instances_or_with(self) -> Self:
        if (self.instances is None) is (self.with_ is None):
            raise ValueError("Exactly one of 'instances' or 'with' must be provided")
        return self

    def invocations(self) -> Iterator[tuple[str, dict[str, Any]]]:
        """``(label, kwargs)`` per call; an instance key becomes the ``name`` kwarg."""
        if self.instances is None:
            yield self.call, dict(self.with_ or {})
            return
        for name, params in self.instances.items():
            yield f"'{self.call}' instance '{name}'", {"name": name, **params}


def _entry_point(name: str) -> ModuleFn:
    found = importlib.metadata.entry_points(group=ENTRY_POINT_GROUP, name=name)
    for ep in found:
        return ep.load()
    raise ModuleExpansionError(f"No entry point found for '{name}' in group '{ENTRY_POINT_GROUP}'")


def _exec_file(dotted: str, config_dir: Path) -> ModuleType:
    """Execute ``a/b.py`` or ``a/b/__init__.py`` under *config_dir* without touching sys.path."""
    rel = Path(*dotted.split("."))
    source = next(
        (p for p in (config_dir / f"{rel}.py", config_dir / rel / "__init__.py") if p.is_file()),
        None,
    )
    if source is None:
        raise ModuleExpansionError(f"Module '{dotted}' not found relative to {config_dir}")

    loader_spec = importlib.util.spec_from_file_location(dotted, source)
    if loader_spec is None or loader_spec.loader is None:
        raise ModuleExpansionError(f"Cannot load '{source}' as a Python module")
    module = importlib.util.module_from_spec(loader_spec)
    try:
        loader_spec.loader.exec_module(module)
    except Exception as exc:
        raise ModuleExpansionError(
            f"Module '{dotted}' failed to import: {type(exc).__name__}: {exc}"
        ) from exc
    logger.debug("Loaded module %s from %s", dotted, source)
    return module


def _resolve_callable(call: str, config_dir: Path) -> ModuleFn:
    if ":" not in call:
        return _entry_point(call)

    dotted, _, attr = call.rpartition(":")
    if not (dotted and attr):
        raise ModuleExpansionError(
            f"Invalid call syntax '{call}': expected 'module.path:function_name'"
        )
    try:
        module = importlib.import_module(dotted)
    except ModuleNotFoundError:
        module = _exec_file(dotted, config_dir)

    if not hasattr(module, attr):
        raise ModuleExpansionError(f"Module has no attribute '{attr}' (from '{call}')")
    fn = getattr(module, attr)
    if not callable(fn):
        raise ModuleExpansionError(f"'{call}' is not a callable attribute")
    return fn


def _invoke(fn: ModuleFn, label: str, kwargs: dict[str, Any]) -> list[Resource]:
    try:
        produced = fn(**kwargs)
    except ModuleExpansionError:
        raise
    except Exception as exc:
        raise ModuleExpansionError(f"Module {label} raised {type(exc).__name__}: {exc}") from exc

    if isinstance(produced, list) and all(isinstance(r, Resource) for r in produced):
        return produced
    raise ModuleExpansionError(f"Module {label} must return list[Resource]")


def expand_modules(modules: list[ModuleSpec], config_dir: Path) -> list[Resource]:
    """Run every module invocation in declaration order and concatenate the results."""
    expanded: list[Resource] = []
    for spec in modules:
        fn = _resolve_callable(spec.call, config_dir)
        for label, kwargs in spec.invocations():
            produced = _invoke(fn, label, kwargs)
            logger.debug("Module %s produced %d resource(s)", label, len(produced))
            expanded.extend(produced)
    return expanded
