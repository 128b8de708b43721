"""Bulk migrator: copy migratable tables from the embedded to the external engine.

Invoked by an explicit administrative action after the selector has
switched to the external engine. Re-running is always safe:

- rows are upserted keyed by primary key, never inserted-or-failed;
- every batch commits on its own, so an interrupted copy keeps what it
  wrote and the next run fills in the rest without duplicates;
- each table reports independently, so only failed tables need a retry.

Table names from the caller are re-validated here: unknown, critical and
unclassified tables are refused without a single row being read.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any

from panelstore.core.adapters.base import DatabaseAdapter
from panelstore.core.ddl import ensure_table
from panelstore.core.engine import EngineSelector
from panelstore.core.errors import EngineUnreachable, UnknownTableError
from panelstore.core.logging import get_logger
from panelstore.core.schema import TABLES, TableRegistry, TableSchema

logger = get_logger(__name__)


@dataclass
class TableCopyResult:
    """Per-table outcome of :meth:`BulkMigrator.copy_all`."""

    table: str
    ok: bool
    rows: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"ok": self.ok, "rows": self.rows, "error": self.error}


class BulkMigrator:
    """Copies rows of migratable tables into the active external engine."""

    def __init__(
        self,
        embedded: DatabaseAdapter,
        selector: EngineSelector,
        *,
        registry: TableRegistry = TABLES,
        batch_size: int = 500,
    ):
        self._embedded = embedded
        self._selector = selector
        self._registry = registry
        self._batch_size = batch_size

    def copy_all(self, tables: Iterable[str] | None = None) -> dict[str, TableCopyResult]:
        """Copy ``tables`` (default: every migratable table)."""
        state = self._selector.current()
        if not state.external_live:
            raise EngineUnreachable("Bulk migration requires an active external engine")

        names = list(tables) if tables is not None else sorted(self._registry.migratable)
        results: dict[str, TableCopyResult] = {}
        for name in names:
            try:
                schema = self._registry.resolve(name)
            except UnknownTableError as e:
                results[name] = TableCopyResult(name, ok=False, error=e.message)
                continue
            if not schema.is_migratable:
                logger.warning(
                    "bulk.table_refused",
                    table=schema.name,
                    classification=schema.classification.value,
                )
                results[name] = TableCopyResult(
                    schema.name,
                    ok=False,
                    error=f"{schema.classification.value} table is never copied externally",
                )
                continue
            try:
                with state.pool.lease() as external:
                    copied = self._copy_table(schema, external)
            except Exception as e:
                logger.error("bulk.table_failed", table=schema.name, error=str(e))
                results[name] = TableCopyResult(schema.name, ok=False, error=str(e))
                continue
            results[name] = TableCopyResult(schema.name, ok=True, rows=copied)

        logger.info(
            "bulk.done",
            ok=sorted(n for n, r in results.items() if r.ok),
            failed=sorted(n for n, r in results.items() if not r.ok),
        )
        return results

    def _copy_table(self, schema: TableSchema, external: DatabaseAdapter) -> int:
        with external.transaction() as conn:
            ensure_table(external, conn, schema)

        with self._embedded.transaction() as conn:
            present = set(self._embedded.table_columns(conn, schema.name))
        columns = [c for c in schema.column_names if c in present]
        upsert = external.dialect.upsert(schema.name, columns, [schema.primary_key])

        copied = 0
        for batch in self._batches(schema, columns):
            with external.transaction() as conn:
                external.run_many(conn, upsert, [[row[c] for c in columns] for row in batch])
            copied += len(batch)
            logger.debug("bulk.batch_copied", table=schema.name, rows=copied)
        logger.info("bulk.table_copied", table=schema.name, rows=copied)
        return copied

    def _batches(self, schema: TableSchema, columns: list[str]) -> Iterator[list[dict[str, Any]]]:
        """Keyset-paginated reads so the embedded lock is held one batch at a time."""
        d = self._embedded.dialect
        key = schema.primary_key
        select = ", ".join(d.quote(c) for c in columns)
        base = f"SELECT {select} FROM {d.quote(schema.name)}"
        last: Any = None
        while True:
            with self._embedded.transaction() as conn:
                if last is None:
                    batch = self._embedded.fetch_all(
                        conn, f"{base} ORDER BY {d.quote(key)} LIMIT {self._batch_size}"
                    )
                else:
                    batch = self._embedded.fetch_all(
                        conn,
                        f"{base} WHERE {d.quote(key)} > {d.placeholder(0)} "
                        f"ORDER BY {d.quote(key)} LIMIT {self._batch_size}",
                        (last,),
                    )
            if not batch:
                return
            yield batch
            if len(batch) < self._batch_size:
                return
            last = batch[-1][key]


__all__ = ["BulkMigrator", "TableCopyResult"]
