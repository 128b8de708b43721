"""SQLite database adapter (embedded engine).

One connection per adapter, shared across threads and serialized by a
re-entrant lock: SQLite allows a single writer, so the adapter enforces
that discipline itself rather than relying on busy-timeouts.

The connection runs in autocommit mode (``isolation_level=None``) and
:meth:`SQLiteAdapter.transaction` issues ``BEGIN IMMEDIATE`` / ``COMMIT``
/ ``ROLLBACK`` explicitly, which makes DDL transactional as well.
"""

from __future__ import annotations

import sqlite3
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from panelstore.core.errors import DatabaseConnectionError

from .base import DatabaseAdapter
from .types import DatabaseConfig, DatabaseType

# SQLite VM instructions between progress-handler callbacks
_PROGRESS_STEPS = 1000


class SQLiteAdapter(DatabaseAdapter):
    """
    SQLite database adapter.

    Used for the embedded engine and, in tests, as a stand-in for the
    external engine.
    """

    supports_transactional_ddl = True

    def __init__(
        self,
        path: str = ":memory:",
        *,
        readonly: bool = False,
        timeout: float = 5.0,
        **kwargs: Any,
    ):
        config = DatabaseConfig(
            db_type=DatabaseType.SQLITE,
            path=str(path),
            readonly=readonly,
            options=kwargs,
        )
        super().__init__(config)
        self._timeout = timeout
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._depth = 0

    def connect(self) -> None:
        """Connect to the SQLite database file."""
        path = self._config.path or ":memory:"
        uri = path.startswith("file:")
        if not uri and path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)

        with self._lock:
            if self._conn is not None:
                return
            try:
                conn = sqlite3.connect(
                    path,
                    timeout=self._timeout,
                    check_same_thread=False,
                    isolation_level=None,
                    uri=uri,
                )
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA foreign_keys = ON")
                if self._config.readonly:
                    conn.execute("PRAGMA query_only = ON")
            except sqlite3.Error as e:
                raise DatabaseConnectionError(
                    f"Failed to connect to SQLite: {e}",
                    cause=e,
                ) from e
            self._conn = conn
            self._connected = True

    def disconnect(self) -> None:
        """Close the SQLite connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
            self._connected = False

    def get_connection(self) -> sqlite3.Connection:
        """Get the SQLite connection, connecting on first use."""
        if self._conn is None:
            self.connect()
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Serialized transaction; nested calls join the outer transaction."""
        with self._lock:
            conn = self.get_connection()
            if self._depth:
                self._depth += 1
                try:
                    yield conn
                finally:
                    self._depth -= 1
                return

            conn.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield conn
            except BaseException:
                # An interrupted statement may already have rolled back.
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            else:
                try:
                    conn.execute("COMMIT")
                except sqlite3.Error:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise
            finally:
                self._depth = 0

    @contextmanager
    def interrupt_after(self, conn: sqlite3.Connection, deadline: float | None) -> Iterator[None]:
        """Interrupt long statements via the progress handler."""
        if deadline is None:
            yield
            return

        def _check() -> int:
            return 1 if time.monotonic() > deadline else 0

        conn.set_progress_handler(_check, _PROGRESS_STEPS)
        try:
            yield
        finally:
            conn.set_progress_handler(None, _PROGRESS_STEPS)

    # ------------------------------------------------------------------
    # Online backup
    # ------------------------------------------------------------------

    def backup(self, dest: str | Path) -> None:
        """Copy the whole database into ``dest`` (overwritten if present)."""
        target = sqlite3.connect(str(dest))
        try:
            with self._lock:
                self._require_idle("backup")
                self.get_connection().backup(target)
        finally:
            target.close()

    def restore(self, source: str | Path) -> None:
        """Replace the database contents with those of the file at ``source``."""
        origin = sqlite3.connect(f"{Path(source).resolve().as_uri()}?mode=ro", uri=True)
        try:
            with self._lock:
                self._require_idle("restore")
                origin.backup(self.get_connection())
        finally:
            origin.close()

    def _require_idle(self, action: str) -> None:
        if self._depth:
            raise DatabaseConnectionError(f"Cannot {action} inside an open transaction")


__all__ = [
    "SQLiteAdapter",
]
