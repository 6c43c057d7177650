"""Plan and apply output rendering (Terraform-style)."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, NamedTuple

import typer

from edge_provisioner.engine.types import Action

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from edge_provisioner.engine.builder import ResourceGraph
    from edge_provisioner.engine.types import ApplyResult, Plan, ResourceChange


class _ActionStyle(NamedTuple):
    color: str
    symbol: str
    headline: str
    progress_verb: str
    done_verb: str


_ACTION_STYLES: dict[str, _ActionStyle] = {
    "create": _ActionStyle("green", "+", "will be created", "Creating", "Creation complete"),
    "update": _ActionStyle(
        "yellow", "~", "will be updated in-place", "Updating", "Update complete"
    ),
    "delete": _ActionStyle("red", "-", "will be destroyed", "Destroying", "Destroy complete"),
    "no-op": _ActionStyle("bright_black", " ", "is up-to-date", "", ""),
}

# (action, plan verb, apply verb, color) in summary order.
_COUNTED = (
    ("create", "to add", "added", "green"),
    ("update", "to change", "changed", "yellow"),
    ("delete", "to destroy", "destroyed", "red"),
)


def styler(color: bool) -> Callable[..., str]:
    """Return ``typer.style`` when *color* is True, otherwise a passthrough."""
    if color:
        return typer.style
    return lambda text, **_kw: text


def has_actionable_changes(plan: Plan) -> bool:
    return any(c.action != Action.NOOP for c in plan.changes)


def _literal(value: Any) -> str:
    """HCL-ish rendering: quoted strings, ``null``, lowercase booleans, JSON blocks."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return f'"{value}"'
    if isinstance(value, dict | list):
        return json.dumps(value, sort_keys=True)
    return str(value)


def _attribute_lines(change: ResourceChange) -> dict[str, str]:
    if change.action == Action.CREATE:
        return {k: _literal(v) for k, v in (change.planned or {}).items()}
    if change.action == Action.UPDATE:
        return {
            k: f"{_literal(d['from'])} -> {_literal(d['to'])}"
            for k, d in (change.diff or {}).items()
        }
    return {}


def format_change(change: ResourceChange, *, color: bool = True) -> str:
    """Render a single ResourceChange as a Terraform-style block."""
    action = _ACTION_STYLES[change.action.value]
    paint = styler(color)
    _, _, name = change.address.partition(".")
    attrs = _attribute_lines(change)
    width = max(map(len, attrs), default=0)

    lines = [
        paint(f"  # {change.address} {action.headline}", fg=action.color, bold=True),
        paint(
            f'  {action.symbol} resource "{change.resource_type}" "{name or change.address}" {{',
            fg=action.color,
        ),
    ]
    lines += [
        paint(f"      {action.symbol} {key.ljust(width)} = {text}", fg=action.color)
        for key, text in attrs.items()
    ]
    lines.append(paint("    }", fg=action.color))
    return "\n".join(lines)


def format_changes(changes: Iterable[ResourceChange], *, color: bool = True) -> str:
    blocks = [format_change(c, color=color) for c in changes if c.action != Action.NOOP]
    return "\n\n".join(blocks) or "No changes. Resources are up-to-date."


def format_plan(plan: Plan, *, color: bool = True) -> str:
    return format_changes(plan.changes, color=color)


def changes_summary(changes: Iterable[ResourceChange]) -> dict[str, int]:
    """Count changes by action type (create/update/delete)."""
    summary = {action: 0 for action, *_ in _COUNTED}
    for c in changes:
        if c.action.value in summary:
            summary[c.action.value] += 1
    return summary


def _counts(summary: dict[str, int], *, applied: bool, color: bool) -> str:
    paint = styler(color)
    parts = []
    for action, plan_verb, apply_verb, fg in _COUNTED:
        n = summary.get(action, 0)
        text = f"{n} {apply_verb if applied else plan_verb}"
        parts.append(paint(text, fg=fg) if n else text)
    return ", ".join(parts)


def format_plan_summary(
    summary: dict[str, int], *, color: bool = True, header: str = "Plan"
) -> str:
    """Render ``Plan: 2 to add, 1 to change, 0 to destroy.``"""
    return f"{header}: {_counts(summary, applied=False, color=color)}."


def format_apply_summary(summary: dict[str, int], *, color: bool = True) -> str:
    """Render ``Apply complete! Resources: 2 added, 0 changed, 0 destroyed.``"""
    banner = styler(color)("Apply complete!", fg="green", bold=True)
    return f"{banner} Resources: {_counts(summary, applied=True, color=color)}."


def format_apply_failures(result: ApplyResult, *, color: bool = True) -> str:
    """Failed nodes with their reasons first, then the nodes they blocked."""
    paint = styler(color)
    banner = paint("Apply finished with errors!", fg="red", bold=True)
    lines = [f"{banner} Resources: {_counts(result.summary(), applied=True, color=color)}."]
    for node in result.failed:
        retried = f" after {node.attempts} attempts" if node.attempts > 1 else ""
        lines.append(paint(f"  ✗ {node.address}: failed{retried}: {node.error}", fg="red"))
    lines += [
        paint(f"  ! {node.address}: blocked by {node.blocked_by}", fg="yellow")
        for node in result.blocked
    ]
    return "\n".join(lines)


def format_graph(graph: ResourceGraph) -> str:
    """One numbered line per resource in apply order, with its direct dependencies."""
    lines = []
    for position, address in enumerate(graph.order, start=1):
        deps = graph.dependencies(address)
        arrow = f" <- {', '.join(deps)}" if deps else ""
        lines.append(f"{position:3d}. {address}{arrow}")
    return "\n".join(lines)
