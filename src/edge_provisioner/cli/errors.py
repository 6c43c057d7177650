"""Map exceptions to clean stderr messages and exit codes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import typer

if TYPE_CHECKING:
    from collections.abc import Callable


def _config_error(exc: Any) -> list[str]:
    return [f"Configuration error: {exc}"]


def _validation(exc: Any) -> list[str]:
    return ["Validation failed:", *(f"  - {e}" for e in exc.errors)]


def _cycle(exc: Any) -> list[str]:
    return [f"Dependency cycle: {' -> '.join(exc.addresses)}"]


def _unresolved(exc: Any) -> list[str]:
    return ["Unresolved references:", *(f"  - {src} -> {ref}" for src, ref in exc.references)]


def _canceled(exc: Any) -> list[str]:
    lines = ["Apply canceled."]
    if exc.result is not None:
        done = len(exc.result.applied)
        not_started = sum(n.status.value == "canceled" for n in exc.result.nodes)
        lines.append(f"  {done} operation(s) completed, {not_started} not started.")
    return lines


def _prefixed(prefix: str) -> Callable[[Any], list[str]]:
    return lambda exc: [f"{prefix}: {exc}"]


def _renderers() -> list[tuple[type[Exception], Callable[[Any], list[str]]]]:
    from edge_provisioner.config.loader import ConfigError
    from edge_provisioner.engine.errors import (
        ApplyCanceled,
        ConflictError,
        CycleError,
        StalePlanError,
        StateMismatchError,
        UnresolvedReferenceError,
        ValidationError,
    )

    return [
        (ConfigError, _config_error),
        (ValidationError, _validation),
        (CycleError, _cycle),
        (UnresolvedReferenceError, _unresolved),
        (ConflictError, _prefixed("State is locked by another run")),
        (StalePlanError, _prefixed("Plan is stale")),
        (StateMismatchError, _prefixed("State mismatch")),
        (ApplyCanceled, _canceled),
    ]


def handle_error(exc: Exception, *, color: bool = True) -> int:
    """Print a one-line (or short list) error to stderr and return exit code 1.

    No tracebacks are printed.
    """
    render = next((r for t, r in _renderers() if isinstance(exc, t)), _prefixed("Error"))
    fg = typer.colors.RED if color else None
    for line in render(exc):
        typer.echo(typer.style(line, fg=fg), err=True)
    return 1
