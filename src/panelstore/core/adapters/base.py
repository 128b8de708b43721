"""Database adapter base class.

Manifesto:
    The router, migration runner and bulk migrator talk to both engines
    through one interface. Adapters own connection lifecycle, cursor
    shape and transaction boundaries; everything above them works on
    plain ``dict`` rows and dialect-generated SQL.

Features:
    - Abstract ``connect()``, ``disconnect()``, ``get_connection()``,
      ``transaction()``
    - Row helpers ``fetch_all()`` / ``run()`` that work inside a transaction
    - Catalogue helpers ``table_exists()`` / ``table_columns()``
    - ``interrupt_after()`` hook for per-operation deadlines
    - ``supports_transactional_ddl`` flag consulted by the migration runner
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any

from panelstore.core.dialect import Dialect, get_dialect

from .types import DatabaseConfig, DatabaseType


class DatabaseAdapter(ABC):
    """
    Abstract base class for database adapters.

    Provides common row and catalogue helpers and defines the interface
    that the SQLite and MySQL adapters implement.
    """

    #: Whether DDL statements roll back with the surrounding transaction.
    supports_transactional_ddl: bool = False

    def __init__(self, config: DatabaseConfig):
        self._config = config
        self._connected = False
        self._dialect: Dialect = get_dialect(config.db_type.value)

    @property
    def config(self) -> DatabaseConfig:
        return self._config

    @property
    def dialect(self) -> Dialect:
        """SQL dialect for this adapter's database type."""
        return self._dialect

    @property
    def db_type(self) -> DatabaseType:
        """Database type."""
        return self._config.db_type

    @property
    def is_connected(self) -> bool:
        """Whether adapter is connected."""
        return self._connected

    @abstractmethod
    def connect(self) -> None:
        """Establish connection (or pool) to the database."""
        ...

    @abstractmethod
    def disconnect(self) -> None:
        """Close all connections to the database."""
        ...

    @abstractmethod
    def get_connection(self) -> Any:
        """Get a connection (may be from pool)."""
        ...

    def release_connection(self, conn: Any) -> None:
        """Return a connection obtained from :meth:`get_connection`."""

    @abstractmethod
    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """Context manager for a transaction; commits or rolls back."""
        ...

    @contextmanager
    def interrupt_after(self, conn: Any, deadline: float | None) -> Iterator[None]:
        """Abort statements on ``conn`` once ``time.monotonic()`` passes ``deadline``.

        The default implementation does nothing; engines that can interrupt
        a running statement override it.
        """
        yield

    # ------------------------------------------------------------------
    # Row helpers (operate on a connection from transaction())
    # ------------------------------------------------------------------

    def cursor(self, conn: Any) -> Any:
        return conn.cursor()

    def fetch_all(self, conn: Any, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Execute a query on ``conn`` and return rows as dicts."""
        cur = self.cursor(conn)
        try:
            cur.execute(sql, tuple(params))
            return [dict(row) for row in cur.fetchall()]
        finally:
            cur.close()

    def run(self, conn: Any, sql: str, params: Sequence[Any] = ()) -> int:
        """Execute a statement on ``conn`` and return the affected row count."""
        cur = self.cursor(conn)
        try:
            cur.execute(sql, tuple(params))
            return cur.rowcount
        finally:
            cur.close()

    def run_many(self, conn: Any, sql: str, params: list[Sequence[Any]]) -> int:
        """Execute a statement for multiple parameter sets."""
        if not params:
            return 0
        cur = self.cursor(conn)
        try:
            cur.executemany(sql, [tuple(p) for p in params])
            return cur.rowcount
        finally:
            cur.close()

    def table_exists(self, conn: Any, table: str) -> bool:
        return bool(self.fetch_all(conn, self._dialect.table_exists_query(), (table,)))

    def table_columns(self, conn: Any, table: str) -> list[str]:
        """Column names of ``table`` in declaration order ([] if absent)."""
        rows = self.fetch_all(conn, self._dialect.columns_query(), (table,))
        return [next(iter(row.values())) for row in rows]

    def unique_columns(self, conn: Any, table: str) -> set[str]:
        """Columns that are unique on their own (single-column PK or unique index)."""
        rows = self.fetch_all(conn, self._dialect.unique_columns_query(), (table,))
        return {next(iter(row.values())) for row in rows}

    # ------------------------------------------------------------------
    # Convenience wrappers (own transaction)
    # ------------------------------------------------------------------

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Execute query in its own transaction and return results as dicts."""
        with self.transaction() as conn:
            return self.fetch_all(conn, sql, params)

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Execute a statement in its own transaction."""
        with self.transaction() as conn:
            return self.run(conn, sql, params)

    def ping(self) -> None:
        """Round-trip a trivial query; raises on failure."""
        self.query("SELECT 1")

    def __enter__(self) -> DatabaseAdapter:
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disconnect()


__all__ = [
    "DatabaseAdapter",
]
