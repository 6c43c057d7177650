"""``Annotated`` metadata that resource models attach to their fields.

``Ref`` turns a field into a dependency edge, ``ApiField`` places it in the
provider body, and ``Compare`` tells the planner how to diff it. The
helpers below read the markers back off a model class or instance.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, TypeAlias, TypeVar

from pydantic import BaseModel
from pydantic_core import PydanticUndefined

if TYPE_CHECKING:
    from collections.abc import Iterator

    from pydantic.fields import FieldInfo

M = TypeVar("M")
CompareStrategy: TypeAlias = Literal["partial", "exact", "set"]
TypeSpec: TypeAlias = str | tuple[str, ...] | None

_MISSING = object()


@dataclass(frozen=True, slots=True)
class ResourceRef:
    """A referenced name plus the type(s) it may resolve to (None: any type)."""

    name: str
    resource_type: TypeSpec = None

    def _types(self) -> tuple[str, ...]:
        if self.resource_type is None:
            return ()
        if isinstance(self.resource_type, str):
            return (self.resource_type,)
        return self.resource_type

    def accepts(self, resource_type: str) -> bool:
        allowed = self._types()
        return not allowed or resource_type in allowed

    def __str__(self) -> str:
        allowed = self._types()
        return f"{'|'.join(allowed)}.{self.name}" if allowed else self.name


@dataclass(frozen=True, slots=True)
class Ref:
    """The field holds the name of another resource, or a list of names."""

    resource_type: TypeSpec = None


@dataclass(frozen=True, slots=True)
class ApiField:
    """Dotted location of the field in the provider body, e.g. ``cloudRun.service``.

    Unmarked fields sit at the top level under their own name.
    """

    path: str


@dataclass(frozen=True, slots=True)
class Compare:
    """``partial`` ignores dict keys absent from the declaration, ``set`` ignores
    list order, ``exact`` is plain equality."""

    strategy: CompareStrategy


def _marked(model_or_cls: Any, marker_type: type[M]) -> Iterator[tuple[str, FieldInfo, M]]:
    cls = model_or_cls if isinstance(model_or_cls, type) else type(model_or_cls)
    for name, info in cls.model_fields.items():
        for meta in info.metadata:
            if isinstance(meta, marker_type):
                yield name, info, meta
                break


def _location(name: str, info: FieldInfo) -> list[str]:
    for meta in info.metadata:
        if isinstance(meta, ApiField):
            return meta.path.split(".")
    return [name]


def _dig(raw: dict[str, Any], keys: list[str]) -> Any:
    node: Any = raw
    for key in keys:
        if not isinstance(node, dict) or key not in node:
            return _MISSING
        node = node[key]
    return node


def _place(body: dict[str, Any], keys: list[str], value: Any) -> None:
    node = body
    for key in keys[:-1]:
        node = node.setdefault(key, {})
    node[keys[-1]] = value


def _default_of(info: FieldInfo) -> Any:
    """Declared default; required fields read back as None."""
    if info.default is not PydanticUndefined:
        return info.default
    if info.default_factory is None:
        return None
    return info.default_factory()  # type: ignore[call-arg]


def _plain(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", exclude_none=True)
    if isinstance(value, list):
        return list(map(_plain, value))
    return value


def _serialized_fields(cls: type, exclude: set[str] | None) -> Iterator[tuple[str, FieldInfo]]:
    skip = exclude or set()
    for name, info in cls.model_fields.items():  # type: ignore[attr-defined]
        if name not in skip and not info.exclude:
            yield name, info


def collect_ref_specs(resource: Any) -> list[ResourceRef]:
    """Every ``Ref`` value on *resource* in field order; unset fields contribute nothing."""
    refs: list[ResourceRef] = []
    for name, _, marker in _marked(resource, Ref):
        value = getattr(resource, name)
        if value is None:
            continue
        names = value if isinstance(value, list) else [value]
        refs += [ResourceRef(name=n, resource_type=marker.resource_type) for n in names]
    return refs


def collect_compare_strategies(resource_or_cls: Any) -> dict[str, CompareStrategy]:
    return {name: marker.strategy for name, _, marker in _marked(resource_or_cls, Compare)}


def build_api_body(resource: Any, *, exclude: set[str] | None = None) -> dict[str, Any]:
    """Provider request body for *resource*; None values are left out."""
    body: dict[str, Any] = {}
    for name, info in _serialized_fields(type(resource), exclude):
        value = getattr(resource, name)
        if value is not None:
            _place(body, _location(name, info), _plain(value))
    return body


def extract_api_attrs(
    resource_cls: type, raw: dict[str, Any], *, exclude: set[str] | None = None
) -> dict[str, Any]:
    """Read model fields back out of a provider body, defaulting what is absent."""
    attrs: dict[str, Any] = {}
    for name, info in _serialized_fields(resource_cls, exclude):
        value = _dig(raw, _location(name, info))
        attrs[name] = _plain(_default_of(info)) if value is _MISSING else value
    return attrs
