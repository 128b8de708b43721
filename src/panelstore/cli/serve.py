"""
CLI: ``panelstore serve``: start the API server.
"""

from __future__ import annotations

import typer
import uvicorn

from panelstore.cli.utils import console

app = typer.Typer(no_args_is_help=True)


@app.command("start")
def start(
    host: str = typer.Option("0.0.0.0", "--host", "-h", help="Bind address"),
    port: int = typer.Option(3001, "--port", "-p", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on changes"),
    log_level: str = typer.Option("info", "--log-level"),
) -> None:
    """Start the panelstore REST API server (single worker: one SQLite writer)."""
    console.print(f"[bold green]Starting panelstore API[/bold green] on {host}:{port}")
    uvicorn.run(
        "panelstore.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        workers=1,
        log_level=log_level,
    )
