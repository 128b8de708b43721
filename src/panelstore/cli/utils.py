"""
CLI utility helpers: output formatting and service construction.
"""

from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from panelstore.core.errors import PanelStoreError
from panelstore.core.settings import StorageSettings, get_settings
from panelstore.core.storage import StorageService

console = Console()
err_console = Console(stderr=True)


# ── Service helper ───────────────────────────────────────────────────────


def open_service(database: str | None = None, *, initialize: bool = True) -> StorageService:
    """Build a service on ``database`` (default: ``PANELSTORE_DB_PATH``) and boot it."""
    settings = get_settings()
    if database:
        settings = StorageSettings(db_path=Path(database))
    service = StorageService(settings)
    if initialize:
        try:
            service.initialize_storage()
        except PanelStoreError as e:
            fail(e)
    return service


def fail(error: PanelStoreError | str) -> None:
    """Print an error and exit with status 1."""
    if isinstance(error, PanelStoreError):
        err_console.print(f"[bold red]Error[/bold red] ({error.__class__.__name__}): {error.message}")
    else:
        err_console.print(f"[bold red]Error[/bold red]: {error}")
    raise typer.Exit(code=1)


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert dataclass / pydantic model / dict to plain dict."""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def output(data: Any, *, as_json: bool = False, title: str = "") -> None:
    """Render a dict, dataclass or list of them to the terminal."""
    if as_json:
        payload = [_to_dict(d) for d in data] if isinstance(data, list | tuple) else _to_dict(data)
        console.print_json(json.dumps(payload, default=str))
        return

    if isinstance(data, list | tuple):
        if not data:
            console.print("[dim]No items.[/dim]")
            return
        _print_table(data, title=title)
    else:
        _print_dict(_to_dict(data), title=title)


# ── Private helpers ──────────────────────────────────────────────────────


def _print_table(items: list, *, title: str = "") -> None:
    """Render a list of dataclasses/dicts as a Rich table."""
    first = _to_dict(items[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in first:
        table.add_column(col, overflow="fold")
    for item in items:
        d = _to_dict(item)
        table.add_row(*(str(v) for v in d.values()))
    console.print(table)


def _print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
