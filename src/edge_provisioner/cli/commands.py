"""CLI command implementations."""

from __future__ import annotations

import contextlib
import os
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Literal

import typer

from edge_provisioner.cli import app
from edge_provisioner.cli.errors import handle_error

if TYPE_CHECKING:
    from collections.abc import Iterator

    from rich.progress import Progress, TaskID

    from edge_provisioner.config.schema import Config
    from edge_provisioner.engine.types import ApplyResult, Plan, ResourceChange

ConfigPath = Annotated[
    Path,
    typer.Option("--config", "-c", help="Stack configuration file."),
]
NoColor = Annotated[bool, typer.Option("--no-color", help="Plain output without ANSI colors.")]
AutoApprove = Annotated[
    bool,
    typer.Option("--auto-approve", help="Apply without asking for confirmation."),
]
Refresh = Annotated[
    bool,
    typer.Option("--refresh", help="Read live objects into state before diffing."),
]
Parallelism = Annotated[
    int | None,
    typer.Option("--parallelism", "-p", min=1, help="Operations allowed in flight at once."),
]

_DEFAULT_CONFIG = Path("edge-provisioner.yaml")


def _use_color(no_color: bool) -> bool:
    return not (no_color or os.environ.get("NO_COLOR"))


@contextlib.contextmanager
def _reported(color: bool) -> Iterator[None]:
    """Turn library errors raised inside the block into a clean exit 1."""
    try:
        yield
    except (typer.Exit, typer.Abort):
        raise
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc


def _ask(question: str, *, declined: str) -> None:
    try:
        typer.confirm(question, abort=True)
    except typer.Abort as e:
        typer.echo(declined, err=True)
        raise typer.Exit(1) from e


def _print_plan(plan_obj: Plan, *, color: bool) -> None:
    from edge_provisioner.cli.formatting import format_plan, format_plan_summary

    typer.echo(format_plan(plan_obj, color=color))
    typer.echo()
    typer.echo(format_plan_summary(plan_obj.summary(), color=color))


class _ProgressReporter:
    """Feeds engine progress events into a Rich progress bar."""

    def __init__(self, progress: Progress, task: TaskID) -> None:
        self._progress = progress
        self._task = task

    def __call__(
        self, change: ResourceChange, event: Literal["start", "done", "failed"]
    ) -> None:
        from edge_provisioner.cli.formatting import _ACTION_STYLES

        style = _ACTION_STYLES[change.action.value]
        if event == "start":
            self._progress.update(
                self._task, description=f"{change.address}: {style.progress_verb}..."
            )
            return
        status = style.done_verb if event == "done" else "[red]failed[/red]"
        self._progress.console.print(f"  {change.address}: {status}")
        self._progress.advance(self._task)


def _run_apply(
    plan_obj: Plan, cfg: Config, *, color: bool, parallelism: int | None
) -> ApplyResult:
    from rich.console import Console
    from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

    from edge_provisioner.config import apply
    from edge_provisioner.engine.types import Action

    pending = sum(c.action != Action.NOOP for c in plan_obj.changes)
    columns = (
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
    )
    with Progress(*columns, console=Console(no_color=not color)) as progress:
        reporter = _ProgressReporter(progress, progress.add_task("Applying", total=pending))
        return apply(plan_obj, cfg, progress=reporter, parallelism=parallelism)


def _execute(
    plan_obj: Plan,
    cfg: Config,
    *,
    color: bool,
    auto_approve: bool,
    parallelism: int | None,
    question: str,
    nothing_to_do: str,
) -> None:
    """Show *plan_obj*, ask for approval and apply it.

    Exits 0 when there is nothing to do and 1 when any node failed or was
    blocked; the failure report goes to stderr.
    """
    from edge_provisioner.cli.formatting import (
        format_apply_failures,
        format_apply_summary,
        has_actionable_changes,
    )

    if not has_actionable_changes(plan_obj):
        typer.echo(nothing_to_do)
        raise typer.Exit(0)

    _print_plan(plan_obj, color=color)
    typer.echo()
    if not auto_approve:
        _ask(question, declined="Apply canceled.")

    with _reported(color):
        result = _run_apply(plan_obj, cfg, color=color, parallelism=parallelism)

    typer.echo()
    if result.ok:
        typer.echo(format_apply_summary(result.summary(), color=color))
        return
    typer.echo(format_apply_failures(result, color=color), err=True)
    raise typer.Exit(1)


@app.command()
def plan(
    config: ConfigPath = _DEFAULT_CONFIG,
    out: Annotated[
        Path | None,
        typer.Option("--out", "-o", help="Write the plan as JSON for a later apply."),
    ] = None,
    no_color: NoColor = False,
    refresh: Refresh = False,
) -> None:
    """Show what apply would change. Exits 2 when there are changes."""
    from edge_provisioner import config as api
    from edge_provisioner.cli.formatting import has_actionable_changes

    color = _use_color(no_color)
    with _reported(color):
        plan_obj = api.plan(api.load(config), refresh=refresh)

    _print_plan(plan_obj, color=color)
    if out is not None:
        plan_obj.save(out)
        typer.echo(f"\nPlan saved to {out}")
    if has_actionable_changes(plan_obj):
        raise typer.Exit(2)


@app.command(name="apply")
def apply_cmd(
    plan_file: Annotated[
        Path | None,
        typer.Argument(help="Plan written by 'plan --out'; planned fresh when omitted."),
    ] = None,
    config: ConfigPath = _DEFAULT_CONFIG,
    auto_approve: AutoApprove = False,
    parallelism: Parallelism = None,
    no_color: NoColor = False,
    refresh: Refresh = False,
) -> None:
    """Create, update and delete resources to match the configuration."""
    from edge_provisioner import config as api
    from edge_provisioner.engine.types import Plan

    color = _use_color(no_color)
    with _reported(color):
        cfg = api.load(config)
        if plan_file is None:
            plan_obj = api.plan(cfg, refresh=refresh)
        else:
            plan_obj = Plan.load(plan_file)

    _execute(
        plan_obj,
        cfg,
        color=color,
        auto_approve=auto_approve,
        parallelism=parallelism,
        question="Do you want to apply these changes?",
        nothing_to_do="No changes. Resources are up-to-date.",
    )


@app.command()
def destroy(
    config: ConfigPath = _DEFAULT_CONFIG,
    auto_approve: AutoApprove = False,
    parallelism: Parallelism = None,
    no_color: NoColor = False,
) -> None:
    """Delete every resource tracked in state."""
    from edge_provisioner import config as api

    color = _use_color(no_color)
    with _reported(color):
        cfg = api.load(config)
        plan_obj = api.plan(cfg, destroy=True)

    _execute(
        plan_obj,
        cfg,
        color=color,
        auto_approve=auto_approve,
        parallelism=parallelism,
        question="Do you really want to destroy all resources?",
        nothing_to_do="No resources to destroy.",
    )


@app.command(name="refresh")
def refresh_cmd(
    config: ConfigPath = _DEFAULT_CONFIG,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
) -> None:
    """Read every tracked resource from the provider and update state."""
    from edge_provisioner import config as api
    from edge_provisioner.cli.formatting import changes_summary, format_changes, format_plan_summary

    color = _use_color(no_color)
    with _reported(color):
        cfg = api.load(config)
        changes, state = api.refresh(cfg)

    if not changes:
        typer.echo("No changes. State is up-to-date with the provider.")
        raise typer.Exit(0)

    typer.echo(format_changes(changes, color=color))
    typer.echo()
    typer.echo(format_plan_summary(changes_summary(changes), color=color, header="Refresh"))
    typer.echo()
    if not auto_approve:
        _ask("Do you want to update the state file?", declined="Refresh canceled.")

    with _reported(color):
        api.save_state(cfg, state)
    tracked = len(state.resources)
    typer.echo(f"State refreshed. {tracked} resource{'' if tracked == 1 else 's'} tracked.")


@app.command()
def drift(
    config: ConfigPath = _DEFAULT_CONFIG,
    no_color: NoColor = False,
) -> None:
    """Report live objects that no longer match state. Never writes."""
    from edge_provisioner import config as api
    from edge_provisioner.cli.formatting import format_changes

    color = _use_color(no_color)
    with _reported(color):
        changes = api.drift(api.load(config))

    if changes:
        typer.echo("Drift detected:\n")
        typer.echo(format_changes(changes, color=color))
    else:
        typer.echo("No drift detected. State is up-to-date with the provider.")


@app.command()
def validate(
    config: ConfigPath = _DEFAULT_CONFIG,
    no_color: NoColor = False,
) -> None:
    """Check references, cycles and resource settings without touching the provider."""
    from edge_provisioner import config as api
    from edge_provisioner.cli.formatting import styler

    color = _use_color(no_color)
    with _reported(color):
        api.plan(api.load(config), refresh=False)
    typer.echo(styler(color)("Configuration is valid.", fg="green"))


@app.command()
def graph(
    config: ConfigPath = _DEFAULT_CONFIG,
    dot: Annotated[bool, typer.Option("--dot", help="Emit Graphviz DOT instead.")] = False,
    no_color: NoColor = False,
) -> None:
    """Print resources in the order apply would create them."""
    from edge_provisioner import config as api
    from edge_provisioner.cli.formatting import format_graph

    with _reported(_use_color(no_color)):
        cfg = api.load(config)
        resource_graph = api.graph(cfg)
    typer.echo(resource_graph.to_dot() if dot else format_graph(resource_graph))
