"""
CLI: ``panelstore engine``: storage engine selection and bulk copy.
"""

from __future__ import annotations

import typer

from panelstore.cli.utils import err_console, fail, open_service, output
from panelstore.core.engine import EngineConfig, EngineKind
from panelstore.core.errors import PanelStoreError

app = typer.Typer(no_args_is_help=True)


@app.command()
def status(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show the active engine and external connectivity."""
    service = open_service(database)
    try:
        data = service.get_engine_status()
    finally:
        service.close()
    output(data, as_json=json_out, title="Storage Engine")


@app.command("set")
def set_engine(
    engine: str = typer.Argument(..., help="embedded|external (or sqlite|mariadb)"),
    host: str = typer.Option("", "--host"),
    port: int = typer.Option(3306, "--port"),
    user: str = typer.Option("", "--user"),
    password: str = typer.Option("", "--password", envvar="PANELSTORE_EXTERNAL_PASSWORD"),
    db_name: str = typer.Option("", "--db-name", help="External database name"),
    database: str | None = typer.Option(None, "--database", "-d", help="Embedded database path"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Persist a new engine configuration and reload."""
    service = open_service(database)
    try:
        config = EngineConfig(
            engine=EngineKind.parse(engine),
            host=host,
            port=port,
            user=user,
            password=password,
            database=db_name,
        )
        data = service.apply_engine_config(config)
    except PanelStoreError as e:
        fail(e)
    finally:
        service.close()

    output(data, as_json=json_out, title="Storage Engine")
    if config.is_external and data["engine"] != EngineKind.EXTERNAL.value:
        err_console.print(
            f"[yellow]External engine unreachable, staying on embedded:[/yellow] {data['error']}"
        )
        raise typer.Exit(code=1)


@app.command()
def migrate(
    table: list[str] | None = typer.Option(None, "--table", "-t", help="Table to copy (repeatable)"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Copy migratable tables from the embedded engine to the external engine."""
    service = open_service(database)
    try:
        results = service.run_bulk_migration(table or None)
    except PanelStoreError as e:
        fail(e)
    finally:
        service.close()

    output(
        [{"table": name, **result.to_dict()} for name, result in results.items()],
        as_json=json_out,
        title="Bulk Migration",
    )
    if not all(r.ok for r in results.values()):
        raise typer.Exit(code=1)


@app.command("init-external")
def init_external(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Create the migratable tables on the external engine."""
    service = open_service(database)
    try:
        tables = service.init_external_schema()
    except PanelStoreError as e:
        fail(e)
    finally:
        service.close()
    output([{"table": t} for t in tables], as_json=json_out, title="External Schema")
