"""
CLI: ``panelstore db``: embedded database commands.
"""

from __future__ import annotations

import typer

from panelstore.cli.backup import app as backup_app
from panelstore.cli.utils import console, fail, open_service, output
from panelstore.core.errors import PanelStoreError
from panelstore.core.migrations import MigrationRunner, SchemaRepairProbe

app = typer.Typer(no_args_is_help=True)
app.add_typer(backup_app, name="backup", help="Create, list, restore and delete backups.")


@app.command()
def init(
    database: str | None = typer.Option(None, "--database", "-d", help="Database path"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Apply pending migrations, repair settings tables, load the engine config."""
    service = open_service(database, initialize=False)
    try:
        report = service.initialize_storage()
    except PanelStoreError as e:
        fail(e)
    finally:
        service.close()
    output(report, as_json=json_out, title="Storage Init")


@app.command()
def status(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show the schema version and pending migrations without applying them."""
    service = open_service(database, initialize=False)
    try:
        data = MigrationRunner(service.embedded).status()
    finally:
        service.close()
    output(data, as_json=json_out, title="Schema Status")


@app.command()
def pending(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List migration steps that have not been applied yet."""
    service = open_service(database, initialize=False)
    try:
        todo = MigrationRunner(service.embedded).get_pending()
    finally:
        service.close()
    steps = [
        {
            "ordinal": s.ordinal,
            "description": s.description,
            "operations": ", ".join(op.describe() for op in s.operations),
        }
        for s in todo
    ]
    if not steps and not json_out:
        console.print("[green]Schema is up to date.[/green]")
        return
    output(steps, as_json=json_out, title="Pending Migrations")


@app.command()
def repair(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Probe the key/value settings tables and rebuild drifted ones."""
    service = open_service(database, initialize=False)
    try:
        reports = SchemaRepairProbe(service.embedded).run()
    finally:
        service.close()
    output(
        [
            {
                "table": r.table,
                "drifted": r.drifted,
                "created": r.created,
                "transplanted": r.transplanted,
                "skipped": r.skipped,
            }
            for r in reports
        ],
        as_json=json_out,
        title="Schema Repair",
    )
