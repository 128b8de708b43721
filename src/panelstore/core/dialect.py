"""SQL dialect abstraction for the embedded and external engines.

The router, the migration operations and the bulk migrator never write
engine-specific SQL. They ask a ``Dialect`` for fragments: placeholders,
identifier quoting, column DDL, upserts and catalogue queries.

Architecture::

    ┌──────────────────────────┐     ┌──────────────────────────────┐
    │ SQLiteDialect (embedded) │     │ MySQLDialect (external)      │
    │ ?, ?, ?                  │     │ %s, %s, %s                   │
    │ "quoted"                 │     │ `quoted`                     │
    │ ON CONFLICT DO UPDATE    │     │ ON DUPLICATE KEY UPDATE      │
    │ pragma_table_info(?)     │     │ information_schema.COLUMNS   │
    └──────────────────────────┘     └──────────────────────────────┘

Examples:
    >>> d = SQLiteDialect()
    >>> d.placeholders(3)
    '?, ?, ?'
    >>> d.quote("key")
    '"key"'
    >>> MySQLDialect().quote("key")
    '`key`'

Guardrails:
    Identifiers handed to a dialect come from the closed table registry,
    never from request payloads; :meth:`quote` still escapes them.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from panelstore.core.errors import ConfigError

if TYPE_CHECKING:
    from panelstore.core.schema import ColumnSpec


@runtime_checkable
class Dialect(Protocol):
    """SQL dialect contract.

    Every method returns a SQL fragment or statement valid for the target
    engine.
    """

    @property
    def name(self) -> str: ...

    def placeholder(self, index: int) -> str: ...

    def placeholders(self, count: int) -> str: ...

    def quote(self, identifier: str) -> str: ...

    def column_type(self, column: ColumnSpec) -> str: ...

    def column_ddl(self, column: ColumnSpec) -> str: ...

    def create_table(self, table: str, columns: Sequence[ColumnSpec]) -> str: ...

    def add_column(self, table: str, column: ColumnSpec) -> str: ...

    def insert(self, table: str, columns: list[str]) -> str: ...

    def insert_or_ignore(self, table: str, columns: list[str]) -> str: ...

    def upsert(self, table: str, columns: list[str], key_columns: list[str]) -> str: ...

    def table_exists_query(self) -> str: ...

    def columns_query(self) -> str: ...

    def unique_columns_query(self) -> str: ...


class _BaseDialect:
    """Shared rendering for the concrete dialects."""

    _quote_char = '"'

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        raise NotImplementedError

    def placeholders(self, count: int) -> str:
        return ", ".join(self.placeholder(i) for i in range(count))

    def quote(self, identifier: str) -> str:
        q = self._quote_char
        return f"{q}{identifier.replace(q, q + q)}{q}"

    def column_type(self, column: ColumnSpec) -> str:
        return column.type

    def column_ddl(self, column: ColumnSpec) -> str:
        parts = [self.quote(column.name), self.column_type(column)]
        if column.primary_key:
            parts.append("PRIMARY KEY")
        elif not column.nullable:
            parts.append("NOT NULL")
        if column.unique and not column.primary_key:
            parts.append("UNIQUE")
        if column.default is not None:
            parts.append(f"DEFAULT {column.default}")
        return " ".join(parts)

    def create_table(self, table: str, columns: Sequence[ColumnSpec]) -> str:
        body = ", ".join(self.column_ddl(c) for c in columns)
        return f"CREATE TABLE IF NOT EXISTS {self.quote(table)} ({body})"

    def add_column(self, table: str, column: ColumnSpec) -> str:
        # ALTER TABLE ... ADD COLUMN cannot carry PRIMARY KEY / UNIQUE on SQLite
        ddl = f"{self.quote(column.name)} {self.column_type(column)}"
        if column.default is not None:
            ddl += f" DEFAULT {column.default}"
        return f"ALTER TABLE {self.quote(table)} ADD COLUMN {ddl}"

    def _columns_and_values(self, columns: list[str]) -> tuple[str, str]:
        cols = ", ".join(self.quote(c) for c in columns)
        return cols, self.placeholders(len(columns))

    def insert(self, table: str, columns: list[str]) -> str:
        cols, ph = self._columns_and_values(columns)
        return f"INSERT INTO {self.quote(table)} ({cols}) VALUES ({ph})"


class SQLiteDialect(_BaseDialect):
    """SQLite (embedded engine)."""

    @property
    def name(self) -> str:
        return "sqlite"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "?"

    def insert_or_ignore(self, table: str, columns: list[str]) -> str:
        cols, ph = self._columns_and_values(columns)
        return f"INSERT OR IGNORE INTO {self.quote(table)} ({cols}) VALUES ({ph})"

    def upsert(self, table: str, columns: list[str], key_columns: list[str]) -> str:
        cols, ph = self._columns_and_values(columns)
        keys = ", ".join(self.quote(k) for k in key_columns)
        updates = [c for c in columns if c not in key_columns]
        if not updates:
            return (
                f"INSERT INTO {self.quote(table)} ({cols}) VALUES ({ph}) "
                f"ON CONFLICT ({keys}) DO NOTHING"
            )
        assignments = ", ".join(
            f"{self.quote(c)} = excluded.{self.quote(c)}" for c in updates
        )
        return (
            f"INSERT INTO {self.quote(table)} ({cols}) VALUES ({ph}) "
            f"ON CONFLICT ({keys}) DO UPDATE SET {assignments}"
        )

    def table_exists_query(self) -> str:
        return "SELECT name FROM sqlite_master WHERE type='table' AND name = ?"

    def columns_query(self) -> str:
        return "SELECT name FROM pragma_table_info(?) ORDER BY cid"

    def unique_columns_query(self) -> str:
        # single-column primary keys and single-column unique indexes
        return (
            "WITH t(tbl) AS (SELECT ?) "
            "SELECT p.name FROM t, pragma_table_info(t.tbl) AS p "
            "WHERE p.pk = 1 "
            "AND (SELECT COUNT(*) FROM pragma_table_info(t.tbl) WHERE pk > 0) = 1 "
            "UNION "
            "SELECT ii.name FROM t, pragma_index_list(t.tbl) AS il, "
            "pragma_index_info(il.name) AS ii "
            "WHERE il.\"unique\" = 1 "
            "AND (SELECT COUNT(*) FROM pragma_index_info(il.name)) = 1"
        )


class MySQLDialect(_BaseDialect):
    """MySQL / MariaDB (external engine).

    Uses ``VALUES(col)`` in upserts rather than row aliases, which MariaDB
    does not support.
    """

    _quote_char = "`"

    @property
    def name(self) -> str:
        return "mysql"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "%s"

    def column_type(self, column: ColumnSpec) -> str:
        if column.type == "TEXT" and (column.primary_key or column.unique):
            return "VARCHAR(191)"
        if column.type == "REAL":
            return "DOUBLE"
        return column.type

    def insert_or_ignore(self, table: str, columns: list[str]) -> str:
        cols, ph = self._columns_and_values(columns)
        return f"INSERT IGNORE INTO {self.quote(table)} ({cols}) VALUES ({ph})"

    def upsert(self, table: str, columns: list[str], key_columns: list[str]) -> str:
        updates = [c for c in columns if c not in key_columns]
        if not updates:
            return self.insert_or_ignore(table, columns)
        cols, ph = self._columns_and_values(columns)
        assignments = ", ".join(
            f"{self.quote(c)} = VALUES({self.quote(c)})" for c in updates
        )
        return (
            f"INSERT INTO {self.quote(table)} ({cols}) VALUES ({ph}) "
            f"ON DUPLICATE KEY UPDATE {assignments}"
        )

    def table_exists_query(self) -> str:
        return (
            "SELECT TABLE_NAME FROM information_schema.TABLES "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = %s"
        )

    def columns_query(self) -> str:
        return (
            "SELECT COLUMN_NAME AS name FROM information_schema.COLUMNS "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = %s "
            "ORDER BY ORDINAL_POSITION"
        )

    def unique_columns_query(self) -> str:
        return (
            "SELECT MAX(COLUMN_NAME) AS name FROM information_schema.STATISTICS "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = %s AND NON_UNIQUE = 0 "
            "GROUP BY INDEX_NAME HAVING COUNT(*) = 1"
        )


_DIALECTS: dict[str, type[_BaseDialect]] = {
    "sqlite": SQLiteDialect,
    "mysql": MySQLDialect,
    "mariadb": MySQLDialect,
}


def get_dialect(name: str) -> Dialect:
    """Return the dialect for a database type name."""
    try:
        return _DIALECTS[name.lower()]()
    except KeyError:
        raise ConfigError(f"No SQL dialect for database type: {name}") from None


__all__ = [
    "Dialect",
    "SQLiteDialect",
    "MySQLDialect",
    "get_dialect",
]
