"""Schema and data operations that make up a migration step.

Every operation is idempotent: re-running it after a
partial application leaves the same end state.

=================  ====================================================
``CreateTable``    ``CREATE TABLE IF NOT EXISTS``
``EnsureColumn``   add the column only if absent (see ``ensure_column``)
``CreateIndex``    ``CREATE INDEX IF NOT EXISTS``
``SeedRows``       insert-if-absent keyed by the stable primary key
``RebuildTable``   restructure a table, preserving every convertible row
=================  ====================================================
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from panelstore.core.adapters.base import DatabaseAdapter
from panelstore.core.ddl import ensure_column
from panelstore.core.logging import get_logger
from panelstore.core.schema import ColumnSpec

logger = get_logger(__name__)

RowConverter = Callable[[dict[str, Any]], dict[str, Any]]


class Operation(Protocol):
    def apply(self, adapter: DatabaseAdapter, conn: Any) -> None: ...

    def describe(self) -> str: ...


@dataclass(frozen=True)
class CreateTable:
    table: str
    columns: tuple[ColumnSpec, ...]

    def apply(self, adapter: DatabaseAdapter, conn: Any) -> None:
        adapter.run(conn, adapter.dialect.create_table(self.table, self.columns))

    def describe(self) -> str:
        return f"create table {self.table}"


@dataclass(frozen=True)
class EnsureColumn:
    table: str
    column: ColumnSpec

    def apply(self, adapter: DatabaseAdapter, conn: Any) -> None:
        ensure_column(adapter, conn, self.table, self.column)

    def describe(self) -> str:
        return f"ensure column {self.table}.{self.column.name}"


@dataclass(frozen=True)
class CreateIndex:
    name: str
    table: str
    columns: tuple[str, ...]
    unique: bool = False

    def apply(self, adapter: DatabaseAdapter, conn: Any) -> None:
        q = adapter.dialect.quote
        unique = "UNIQUE " if self.unique else ""
        cols = ", ".join(q(c) for c in self.columns)
        adapter.run(
            conn,
            f"CREATE {unique}INDEX IF NOT EXISTS {q(self.name)} ON {q(self.table)} ({cols})",
        )

    def describe(self) -> str:
        return f"create index {self.name}"


@dataclass(frozen=True)
class SeedRows:
    """Insert reference rows that are absent, keyed by their stable id."""

    table: str
    rows: tuple[Mapping[str, Any], ...]

    def apply(self, adapter: DatabaseAdapter, conn: Any) -> None:
        for row in self.rows:
            columns = list(row)
            sql = adapter.dialect.insert_or_ignore(self.table, columns)
            adapter.run(conn, sql, [row[c] for c in columns])

    def describe(self) -> str:
        return f"seed {len(self.rows)} rows into {self.table}"


@dataclass(frozen=True)
class RebuildTable:
    """Restructure ``table`` into ``columns`` while keeping its rows.

    The old table is renamed to ``_rebuild_<table>``, the new shape is
    created, rows are copied through ``convert`` (default: keep matching
    columns) and the old table is dropped. A row whose conversion raises
    or insert fails is logged with its key and dropped; it never aborts the
    rebuild. Re-running the operation rebuilds again into the same shape
    with the same rows.
    """

    table: str
    columns: tuple[ColumnSpec, ...]
    convert: RowConverter | None = field(default=None, compare=False)

    @property
    def temp_name(self) -> str:
        return f"_rebuild_{self.table}"

    def apply(self, adapter: DatabaseAdapter, conn: Any) -> None:
        d = adapter.dialect
        target = [c.name for c in self.columns]
        exists = adapter.table_exists(conn, self.table)

        if adapter.table_exists(conn, self.temp_name):
            # An interrupted rebuild left the original rows in the temp table.
            logger.warning("migration.rebuild.resumed", table=self.table)
            if exists:
                adapter.run(conn, f"DROP TABLE {d.quote(self.table)}")
        elif exists:
            adapter.run(
                conn, f"ALTER TABLE {d.quote(self.table)} RENAME TO {d.quote(self.temp_name)}"
            )
        else:
            adapter.run(conn, d.create_table(self.table, self.columns))
            return

        adapter.run(conn, d.create_table(self.table, self.columns))

        rows = adapter.fetch_all(conn, f"SELECT * FROM {d.quote(self.temp_name)}")
        insert = d.insert(self.table, target)
        key = next((c.name for c in self.columns if c.primary_key), target[0])
        kept = dropped = 0
        for row in rows:
            try:
                new_row = self.convert(row) if self.convert else row
                values = [new_row.get(c) for c in target]
                adapter.run(conn, insert, values)
            except Exception as e:
                dropped += 1
                logger.warning(
                    "migration.rebuild.row_dropped",
                    table=self.table,
                    row_key=row.get(key),
                    row=row,
                    error=str(e),
                )
                continue
            kept += 1

        adapter.run(conn, f"DROP TABLE {d.quote(self.temp_name)}")
        logger.info("migration.rebuild.done", table=self.table, kept=kept, dropped=dropped)

    def describe(self) -> str:
        return f"rebuild table {self.table}"


__all__ = [
    "Operation",
    "CreateTable",
    "EnsureColumn",
    "CreateIndex",
    "SeedRows",
    "RebuildTable",
]
