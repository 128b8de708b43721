"""Storage service: the narrow interface collaborators use.

HTTP routes and CLI commands never touch adapters, the selector or the
migration runner directly. They hold one :class:`StorageService` and call:

=========================  ===============================================
``initialize_storage()``   boot: migrations, repair, engine config (fatal
                           on failure, must run before any dispatch)
``dispatch()``             table-level CRUD through the router
``get_engine_status()``    ``{engine, external: {...}, error}``
``apply_engine_config()``  validate, persist, reload
``run_bulk_migration()``   copy migratable tables to the external engine
``init_external_schema()`` create migratable tables on the external engine
``create_backup()``        copy the embedded file into the backup directory
``list_backups()``         backups, newest first (``backup_status()`` sums)
``restore_backup()``       replace the embedded file, then boot again
``delete_backup()``        remove one backup file
``close()``                retire the pool and close the embedded file
=========================  ===============================================

Example::

    service = StorageService(StorageSettings(db_path="panel.db"))
    service.initialize_storage()
    rows = service.dispatch("sales", "read", {"routerId": "r1"})
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from panelstore.core.adapters import DatabaseAdapter, SQLiteAdapter
from panelstore.core.backup import BackupInfo, BackupManager
from panelstore.core.bulk import BulkMigrator, TableCopyResult
from panelstore.core.engine import (
    SETTINGS_KEYS,
    AdapterFactory,
    EngineConfig,
    EngineSelector,
)
from panelstore.core.errors import InvalidConfigError, StorageNotReady
from panelstore.core.logging import LogContext, get_logger
from panelstore.core.migrations import MigrationRunner, RepairReport, SchemaRepairProbe
from panelstore.core.router import Operation, StorageRouter
from panelstore.core.settings import StorageSettings, get_settings

logger = get_logger(__name__)

_SETTINGS_TABLE = "panel_settings"


@dataclass
class BootReport:
    """What ``initialize_storage`` did."""

    from_version: int
    version: int
    applied: list[int] = field(default_factory=list)
    repairs: list[RepairReport] = field(default_factory=list)
    engine: str = "embedded"

    def to_dict(self) -> dict[str, Any]:
        return {
            "from_version": self.from_version,
            "version": self.version,
            "applied": self.applied,
            "repaired": [r.table for r in self.repairs if r.repaired],
            "engine": self.engine,
        }


class StorageService:
    """Facade over the migration engine, router, selector and bulk migrator."""

    def __init__(
        self,
        settings: StorageSettings | None = None,
        *,
        embedded: DatabaseAdapter | None = None,
        adapter_factory: AdapterFactory | None = None,
    ):
        self.settings = settings or get_settings()
        self.embedded = embedded or SQLiteAdapter(str(self.settings.db_path))
        self.selector = EngineSelector(self.settings, adapter_factory=adapter_factory)
        self.router = StorageRouter(
            self.embedded,
            self.selector,
            default_timeout=self.settings.default_timeout,
        )
        self.bulk = BulkMigrator(
            self.embedded,
            self.selector,
            batch_size=self.settings.bulk_batch_size,
        )
        self.backups = BackupManager(self.embedded, self.settings.backups_path)
        self._ready = False

    @property
    def ready(self) -> bool:
        return self._ready

    # ------------------------------------------------------------------
    # Boot
    # ------------------------------------------------------------------

    def initialize_storage(self) -> BootReport:
        """Migrate, repair and load the engine configuration.

        Raises:
            MigrationFailure: a step failed; the caller must not serve traffic
        """
        self.embedded.connect()
        with LogContext(boot_id=uuid.uuid4().hex[:12]):
            runner = MigrationRunner(self.embedded)
            result = runner.apply_pending()
            result.raise_on_failure()

            repairs = SchemaRepairProbe(self.embedded).run()

            try:
                config = self.load_engine_config()
                state = self.selector.reload(config)
            except InvalidConfigError as e:
                logger.warning("storage.engine_config_invalid", key=e.key, error=e.message)
                state = self.selector.current()

            self._ready = True
            report = BootReport(
                from_version=result.from_version,
                version=result.to_version,
                applied=result.applied,
                repairs=repairs,
                engine=state.engine.value,
            )
            logger.info("storage.initialized", **report.to_dict())
        return report

    # ------------------------------------------------------------------
    # Collaborator interface
    # ------------------------------------------------------------------

    def dispatch(
        self,
        table: str,
        operation: str | Operation,
        params: Mapping[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> list[dict[str, Any]]:
        if not self._ready:
            raise StorageNotReady(
                "Storage is not initialized", table=table, operation=str(operation)
            )
        return self.router.dispatch(table, operation, params, timeout=timeout)

    def get_engine_status(self) -> dict[str, Any]:
        return self.selector.status()

    def load_engine_config(self) -> EngineConfig:
        """Engine configuration persisted in ``panel_settings``."""
        keys = list(SETTINGS_KEYS.values())
        d = self.embedded.dialect
        rows = self.embedded.query(
            f"SELECT {d.quote('key')}, {d.quote('value')} FROM {d.quote(_SETTINGS_TABLE)} "
            f"WHERE {d.quote('key')} IN ({d.placeholders(len(keys))})",
            keys,
        )
        return EngineConfig.from_mapping({row["key"]: row["value"] for row in rows})

    def apply_engine_config(self, config: EngineConfig | Mapping[str, Any]) -> dict[str, Any]:
        """Validate and persist ``config``, then reload the selector.

        An unreachable external engine is not an error here: the selector
        falls back to embedded and the returned status says why.
        """
        if not isinstance(config, EngineConfig):
            config = EngineConfig.from_mapping(config)
        config.validate()

        upsert = self.embedded.dialect.upsert(_SETTINGS_TABLE, ["key", "value"], ["key"])
        with self.embedded.transaction() as conn:
            self.embedded.run_many(conn, upsert, list(config.to_settings().items()))
        logger.info("storage.engine_config_saved", config=config.redacted())

        self.selector.reload(config)
        return self.get_engine_status()

    def run_bulk_migration(self, tables: Iterable[str] | None = None) -> dict[str, TableCopyResult]:
        return self.bulk.copy_all(tables)

    def init_external_schema(self) -> list[str]:
        return self.selector.init_external_schema()

    # ------------------------------------------------------------------
    # Embedded backups
    # ------------------------------------------------------------------

    def create_backup(self) -> BackupInfo:
        return self.backups.create()

    def list_backups(self) -> list[BackupInfo]:
        return self.backups.available()

    def backup_status(self) -> dict[str, Any]:
        return self.backups.status()

    def delete_backup(self, name: str) -> None:
        self.backups.delete(name)

    def restore_backup(self, name: str) -> dict[str, Any]:
        """Restore backup ``name`` and boot again on the restored contents.

        The restored file may predate the current migration steps or hold a
        different engine configuration, so migrations, repair and the engine
        reload run as on a fresh start.
        """
        snapshot = self.backups.restore(name)
        report = self.initialize_storage()
        return {"restored": name, "snapshot": snapshot.name, "boot": report.to_dict()}

    def close(self) -> None:
        self.selector.close()
        self.embedded.disconnect()
        self._ready = False

    def __enter__(self) -> StorageService:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


__all__ = ["BootReport", "StorageService"]
