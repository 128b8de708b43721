"""
CLI: ``panelstore db backup``: backups of the embedded database.
"""

from __future__ import annotations

import typer

from panelstore.cli.utils import console, fail, open_service, output
from panelstore.core.errors import PanelStoreError

app = typer.Typer(no_args_is_help=True)


@app.command()
def create(
    database: str | None = typer.Option(None, "--database", "-d", help="Database path"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Write a consistent copy of the embedded database to the backup directory."""
    service = open_service(database)
    try:
        info = service.create_backup()
    except PanelStoreError as e:
        fail(e)
    finally:
        service.close()
    output(info, as_json=json_out, title="Backup Created")


@app.command("list")
def list_backups(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List backups, newest first."""
    service = open_service(database, initialize=False)
    try:
        backups = service.list_backups()
    finally:
        service.close()
    output(backups, as_json=json_out, title="Backups")


@app.command()
def status(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show the backup directory, backup count and the latest backup."""
    service = open_service(database, initialize=False)
    try:
        data = service.backup_status()
    finally:
        service.close()
    output(data, as_json=json_out, title="Backup Status")


@app.command()
def delete(
    name: str = typer.Argument(..., help="Backup file name"),
    database: str | None = typer.Option(None, "--database", "-d"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Permanently delete one backup."""
    if not yes:
        typer.confirm(f"Permanently delete backup {name!r}?", abort=True)
    service = open_service(database, initialize=False)
    try:
        service.delete_backup(name)
    except PanelStoreError as e:
        fail(e)
    finally:
        service.close()
    console.print(f"[green]Deleted[/green] {name}")


@app.command()
def restore(
    name: str = typer.Argument(..., help="Backup file name"),
    database: str | None = typer.Option(None, "--database", "-d"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Overwrite the embedded database with a backup, then migrate and repair it."""
    if not yes:
        typer.confirm(f"Restore {name!r}? This overwrites all current panel data.", abort=True)
    service = open_service(database)
    try:
        data = service.restore_backup(name)
    except PanelStoreError as e:
        fail(e)
    finally:
        service.close()
    output(data, as_json=json_out, title="Backup Restored")
