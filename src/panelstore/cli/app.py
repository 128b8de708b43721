"""
Root Typer application for the panelstore CLI.
"""

from __future__ import annotations

import sys

import typer
from typer import Typer

from panelstore.core.logging import configure_logging

app = Typer(
    name="panelstore",
    help="panelstore: migrations and storage engine management for the panel.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("panelstore")
        except PackageNotFoundError:
            from panelstore import __version__ as v
        typer.echo(f"panelstore {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str = typer.Option("WARNING", "--log-level", help="Log level for stderr logs."),
) -> None:
    """panelstore CLI: schema migrations, engine status and bulk copies."""
    configure_logging(level=log_level, json_format=False, stream=sys.stderr)


# ── Sub-command registration ─────────────────────────────────────────────

from panelstore.cli.db import app as db_app  # noqa: E402
from panelstore.cli.engine import app as engine_app  # noqa: E402
from panelstore.cli.serve import app as serve_app  # noqa: E402

app.add_typer(db_app, name="db", help="Embedded database: migrations, repair and backups.")
app.add_typer(engine_app, name="engine", help="Storage engine selection and bulk copy.")
app.add_typer(serve_app, name="serve", help="Start the HTTP API server.")
