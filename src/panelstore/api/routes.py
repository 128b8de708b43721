"""
Storage routes: table CRUD and engine administration.

Every handler is a thin translation of HTTP into one
:class:`~panelstore.core.storage.StorageService` call. Engine, settings
and backup paths are declared before the ``/{table}`` routes so they
are never captured as table names.

Endpoints (under ``settings.api_prefix``, default ``/api/db``)::

    GET    /engine                      engine status
    PUT    /engine                      persist and apply engine config
    GET    /panel-settings              panel settings (password masked)
    POST   /panel-settings              save settings; engine keys reload the engine
    POST   /init-mariadb                create migratable tables externally
    POST   /migrate-sqlite-to-mariadb   bulk copy, per-table results
    GET    /backups                     embedded backups, newest first
    POST   /backups                     create a backup
    GET    /backups/status              backup directory, count, latest
    GET    /backups/{name}              download one backup
    DELETE /backups/{name}              delete one backup
    POST   /backups/{name}/restore      restore, then migrate and repair
    GET    /{table}                     list (tenant tables need ?routerId=)
    GET    /{table}/{id}                one row
    POST   /{table}                     create
    PATCH  /{table}/{id}                update
    DELETE /{table}/{id}                delete
    POST   /{table}/clear-all           clear (tenant tables need ?routerId=)

Critical tables are not reachable through the generic table routes.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Request, status
from fastapi.responses import FileResponse

from panelstore.api.deps import Storage
from panelstore.api.errors import RowNotFound
from panelstore.api.schemas import BulkMigrationRequest, EngineConfigRequest, TableCopyResponse
from panelstore.core.engine import SETTINGS_KEYS, EngineConfig
from panelstore.core.errors import CriticalTableViolation
from panelstore.core.router import Operation
from panelstore.core.schema import TABLES

router = APIRouter()

_SETTINGS = "panel_settings"
_ENGINE_KEYS = frozenset(SETTINGS_KEYS.values())


def _public_table(name: str) -> str:
    schema = TABLES.resolve(name)
    if schema.is_critical:
        raise CriticalTableViolation(
            f"Table {schema.name!r} is not available through the table API"
        ).with_context(table=schema.name)
    return schema.name


def _one(rows: list[dict[str, Any]], table: str, operation: str) -> dict[str, Any]:
    if not rows:
        raise RowNotFound("Row not found", table=table, operation=operation)
    return rows[0]


# ── Engine administration ────────────────────────────────────────────────


@router.get("/engine")
def engine_status(storage: Storage) -> dict[str, Any]:
    """Active engine and external connectivity."""
    return storage.get_engine_status()


@router.put("/engine")
def set_engine(body: EngineConfigRequest, storage: Storage) -> dict[str, Any]:
    """Persist and apply a new engine configuration; returns the resulting status."""
    return storage.apply_engine_config(EngineConfig.from_mapping(body.model_dump()))


@router.get("/panel-settings")
def get_panel_settings(storage: Storage) -> dict[str, Any]:
    rows = storage.dispatch(_SETTINGS, Operation.READ, {})
    values = {row["key"]: row["value"] for row in rows}
    if values.get("dbPassword"):
        values["dbPassword"] = "***"
    return values


@router.post("/panel-settings")
def save_panel_settings(storage: Storage, body: dict[str, Any] = Body(...)) -> dict[str, Any]:
    """Save arbitrary panel settings; engine keys are validated and applied."""
    other = {k: v for k, v in body.items() if k not in _ENGINE_KEYS}
    for key, value in other.items():
        value = value if value is None or isinstance(value, str) else str(value)
        if storage.dispatch(_SETTINGS, Operation.READ, {"key": key}):
            storage.dispatch(_SETTINGS, Operation.UPDATE, {"key": key, "value": value})
        else:
            storage.dispatch(_SETTINGS, Operation.CREATE, {"key": key, "value": value})

    engine_keys = {k: v for k, v in body.items() if k in _ENGINE_KEYS}
    if engine_keys:
        current = storage.load_engine_config()
        merged = {**current.to_settings(), **engine_keys}
        if engine_keys.get("dbPassword") == "***":
            merged["dbPassword"] = current.password
        engine = storage.apply_engine_config(EngineConfig.from_mapping(merged))
    else:
        engine = storage.get_engine_status()
    return {"saved": sorted(body), "engine": engine}


@router.post("/init-mariadb")
def init_external(storage: Storage) -> dict[str, Any]:
    """Create the migratable tables on the external engine."""
    return {"tables": storage.init_external_schema()}


@router.post("/migrate-sqlite-to-mariadb")
def migrate_to_external(
    storage: Storage,
    body: BulkMigrationRequest | None = None,
) -> dict[str, TableCopyResponse]:
    """Copy migratable tables to the external engine."""
    tables = body.tables if body and body.tables else None
    results = storage.run_bulk_migration(tables)
    return {name: TableCopyResponse(**r.to_dict()) for name, r in results.items()}


# ── Embedded backups ─────────────────────────────────────────────────────


@router.get("/backups")
def list_backups(storage: Storage) -> list[dict[str, Any]]:
    return [b.to_dict() for b in storage.list_backups()]


@router.post("/backups", status_code=status.HTTP_201_CREATED)
def create_backup(storage: Storage) -> dict[str, Any]:
    return storage.create_backup().to_dict()


@router.get("/backups/status")
def backup_status(storage: Storage) -> dict[str, Any]:
    return storage.backup_status()


@router.get("/backups/{name}")
def download_backup(name: str, storage: Storage) -> FileResponse:
    path = storage.backups.path_for(name)
    return FileResponse(path, media_type="application/vnd.sqlite3", filename=name)


@router.delete("/backups/{name}")
def delete_backup(name: str, storage: Storage) -> dict[str, Any]:
    storage.delete_backup(name)
    return {"deleted": name}


@router.post("/backups/{name}/restore")
def restore_backup(name: str, storage: Storage) -> dict[str, Any]:
    """Overwrite the embedded database with backup ``name``."""
    return storage.restore_backup(name)


# ── Table CRUD ───────────────────────────────────────────────────────────


@router.get("/{table}")
def list_rows(table: str, request: Request, storage: Storage) -> list[dict[str, Any]]:
    name = _public_table(table)
    return storage.dispatch(name, Operation.READ, dict(request.query_params))


@router.post("/{table}/clear-all")
def clear_rows(
    table: str,
    storage: Storage,
    routerId: str | None = None,  # noqa: N803
) -> dict[str, Any]:
    name = _public_table(table)
    params = {"routerId": routerId} if routerId else {}
    return storage.dispatch(name, Operation.CLEAR, params)[0]


@router.get("/{table}/{row_id}")
def get_row(table: str, row_id: str, storage: Storage) -> dict[str, Any]:
    schema = TABLES.resolve(_public_table(table))
    rows = storage.dispatch(schema.name, Operation.READ, {schema.primary_key: row_id})
    return _one(rows, schema.name, "read")


@router.post("/{table}", status_code=status.HTTP_201_CREATED)
def create_row(table: str, storage: Storage, body: dict[str, Any] = Body(...)) -> dict[str, Any]:
    name = _public_table(table)
    return _one(storage.dispatch(name, Operation.CREATE, body), name, "create")


@router.patch("/{table}/{row_id}")
def update_row(
    table: str,
    row_id: str,
    storage: Storage,
    body: dict[str, Any] = Body(...),
) -> dict[str, Any]:
    schema = TABLES.resolve(_public_table(table))
    params = {**body, schema.primary_key: row_id}
    return _one(storage.dispatch(schema.name, Operation.UPDATE, params), schema.name, "update")


@router.delete("/{table}/{row_id}")
def delete_row(table: str, row_id: str, storage: Storage) -> dict[str, Any]:
    schema = TABLES.resolve(_public_table(table))
    rows = storage.dispatch(schema.name, Operation.DELETE, {schema.primary_key: row_id})
    _one(rows, schema.name, "delete")
    return {"deleted": row_id}
