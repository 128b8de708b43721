"""panelstore core -- migrations, engine selection and storage routing.

Manifesto:
    The panel's data must survive years of schema changes and an optional
    move of business tables to an external MySQL/MariaDB server, without
    ever letting identity, credential or license data leave the embedded
    SQLite file.

    - **Forward-only migrations:** numbered, idempotent, ledger-tracked
    - **Closed table registry:** no SQL built from unchecked table names
    - **Critical tables stay home:** enforced on every dispatch
    - **Reload never tears state:** immutable engine snapshots

Architecture::

    Layer 1 -- Types, errors, settings
        errors.py          PanelStoreError hierarchy
        logging.py         structlog configuration
        settings.py        StorageSettings (pydantic-settings)
        schema.py          TableSchema registry and classifications
        dialect.py         SQLite / MySQL SQL fragments

    Layer 2 -- Engines
        adapters/          SQLiteAdapter, MySQLAdapter, registry
        ddl.py             ensure_column / ensure_table
        pool.py            ExternalPool (bounded, drainable)

    Layer 3 -- Schema lifecycle
        migrations/        ledger, operations, steps, runner, repair

    Layer 4 -- Routing
        engine.py          EngineConfig, EngineState, EngineSelector
        router.py          StorageRouter.dispatch
        bulk.py            BulkMigrator.copy_all
        storage.py         StorageService facade
"""

from panelstore.core.bulk import BulkMigrator, TableCopyResult
from panelstore.core.engine import EngineConfig, EngineKind, EngineSelector, EngineState
from panelstore.core.errors import (
    ConcurrentModification,
    EngineUnreachable,
    MigrationFailure,
    PanelStoreError,
    SchemaDrift,
    StorageError,
    StorageTimeoutError,
)
from panelstore.core.router import Operation, StorageRouter
from panelstore.core.schema import TABLES, Classification, TableSchema
from panelstore.core.settings import StorageSettings, get_settings
from panelstore.core.storage import BootReport, StorageService

__all__ = [
    "BootReport",
    "BulkMigrator",
    "Classification",
    "ConcurrentModification",
    "EngineConfig",
    "EngineKind",
    "EngineSelector",
    "EngineState",
    "EngineUnreachable",
    "MigrationFailure",
    "Operation",
    "PanelStoreError",
    "SchemaDrift",
    "StorageError",
    "StorageRouter",
    "StorageService",
    "StorageSettings",
    "StorageTimeoutError",
    "TABLES",
    "TableCopyResult",
    "TableSchema",
    "get_settings",
]
