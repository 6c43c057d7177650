"""Output reference expressions.

String attributes may embed ``${<resource_type>.<name>.<attribute>}`` to use
another resource's declared value or computed output (e.g. the IP of a global
address in a DNS record). Expressions are found at graph-build time and
substituted at plan time (best effort) and again at apply time.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

UNKNOWN = "(known after apply)"

_EXPR_RE = re.compile(
    r"\$\{(?P<type>[a-z][a-z0-9_]*)\.(?P<name>[A-Za-z0-9_-]+)\.(?P<attr>[A-Za-z_][A-Za-z0-9_]*)\}"
)


@dataclass(frozen=True, slots=True)
class OutputRef:
    """A parsed ``${type.name.attr}`` expression."""

    resource_type: str
    name: str
    attribute: str

    @property
    def address(self) -> str:
        return f"{self.resource_type}.{self.name}"

    def __str__(self) -> str:
        return f"${{{self.resource_type}.{self.name}.{self.attribute}}}"


def find_expressions(value: Any) -> list[OutputRef]:
    """Collect every expression in *value* (strings, dicts and lists, recursively)."""
    if isinstance(value, str):
        return [
            OutputRef(m.group("type"), m.group("name"), m.group("attr"))
            for m in _EXPR_RE.finditer(value)
        ]
    if isinstance(value, dict):
        return [ref for v in value.values() for ref in find_expressions(v)]
    if isinstance(value, list):
        return [ref for v in value for ref in find_expressions(v)]
    return []


def contains_unknown(value: Any) -> bool:
    if isinstance(value, str):
        return UNKNOWN in value
    if isinstance(value, dict):
        return any(contains_unknown(v) for v in value.values())
    if isinstance(value, list):
        return any(contains_unknown(v) for v in value)
    return False


def resolve_expressions(value: Any, lookup: Callable[[OutputRef], Any]) -> Any:
    """Substitute expressions in *value*, recursively.

    A string that is exactly one expression takes the looked-up value as-is
    when it is a string, list or dict; other scalars become text. Embedded
    expressions are interpolated as text. If any lookup returns
    :data:`UNKNOWN` the whole string becomes :data:`UNKNOWN`.
    """
    if isinstance(value, str):
        match = _EXPR_RE.fullmatch(value)
        if match is not None:
            resolved = lookup(
                OutputRef(match.group("type"), match.group("name"), match.group("attr"))
            )
            if resolved is None or isinstance(resolved, str | list | dict):
                return resolved
            return str(resolved)

        unknown = False

        def _sub(m: re.Match[str]) -> str:
            nonlocal unknown
            resolved = lookup(OutputRef(m.group("type"), m.group("name"), m.group("attr")))
            if resolved == UNKNOWN:
                unknown = True
            return str(resolved)

        text = _EXPR_RE.sub(_sub, value)
        return UNKNOWN if unknown else text
    if isinstance(value, dict):
        return {k: resolve_expressions(v, lookup) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_expressions(v, lookup) for v in value]
    return value
