"""CLI application for edge-provisioner."""

from __future__ import annotations

import logging
import os
import sys

import typer

from edge_provisioner import __version__

app = typer.Typer(
    name="edge-provisioner",
    help="Plan and apply load balancer, CDN and DNS resources from YAML.",
    no_args_is_help=True,
    add_completion=False,
)

_LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"
_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}
_VERBOSITY = {1: logging.INFO, 2: logging.DEBUG}


def _requested_level(verbose: int) -> int | None:
    """``EDGE_LOG`` beats ``-v``; None means leave logging alone."""
    name = os.environ.get("EDGE_LOG", "").strip().upper()
    if not name:
        return _VERBOSITY[min(verbose, 2)] if verbose else None
    if name not in _LEVELS:
        print(
            f"WARNING: invalid EDGE_LOG level '{name}', "
            f"expected one of {', '.join(sorted(_LEVELS))}; defaulting to INFO",
            file=sys.stderr,
        )
    return _LEVELS.get(name, logging.INFO)


def _configure_logging(verbose: int) -> None:
    """Route ``edge_provisioner`` loggers to stderr at the requested level.

    Third-party loggers stay at WARNING.
    """
    level = _requested_level(verbose)
    if level is None:
        return
    logging.basicConfig(level=logging.WARNING, format=_LOG_FORMAT, stream=sys.stderr, force=True)
    logging.getLogger("edge_provisioner").setLevel(level)


def _show_version(value: bool) -> None:
    if value:
        typer.echo(f"edge-provisioner {__version__}")
        raise typer.Exit


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_show_version,
        is_eager=True,
    ),
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Log engine progress to stderr (-v info, -vv debug).",
    ),
) -> None:
    """Plan and apply load balancer, CDN and DNS resources from YAML."""
    _ = version
    _configure_logging(verbose)


# Commands register themselves on ``app``; imported last to avoid a cycle.
from edge_provisioner.cli import commands as _commands  # noqa: E402, F401
