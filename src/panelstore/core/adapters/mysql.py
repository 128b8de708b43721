"""MySQL / MariaDB database adapter (external engine).

Uses ``mysql.connector`` from the ``mysql-connector-python`` package.
MySQL uses **format** (``%s``) placeholder style.

The driver-level pool is sized exactly like the
:class:`~panelstore.core.pool.ExternalPool` that fronts it, so the driver
never sees more concurrent borrowers than it has connections; queueing
and timeouts are handled by ``ExternalPool``.
"""

from __future__ import annotations

import itertools
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import mysql.connector
from mysql.connector import pooling

from panelstore.core.errors import DatabaseConnectionError
from panelstore.core.settings import MAX_POOL_SIZE

from .base import DatabaseAdapter
from .types import DatabaseConfig, DatabaseType

_pool_ids = itertools.count(1)

# Server errors raised when a session statement time limit fires
_STATEMENT_TIMEOUT_ERRNOS = frozenset({3024, 1969})


class MySQLAdapter(DatabaseAdapter):
    """MySQL / MariaDB database adapter backed by a driver connection pool.

    DDL is not transactional on MySQL: ``CREATE``/``ALTER`` commit
    implicitly, so callers rely on idempotent statements instead.
    """

    supports_transactional_ddl = False

    def __init__(
        self,
        host: str = "localhost",
        port: int = 3306,
        database: str = "",
        username: str | None = None,
        password: str | None = None,
        *,
        pool_size: int = 5,
        connect_timeout: int = 10,
        charset: str = "utf8mb4",
        **kwargs: Any,
    ):
        config = DatabaseConfig(
            db_type=DatabaseType.MYSQL,
            host=host,
            port=port,
            database=database,
            username=username,
            password=password,
            pool_size=min(pool_size, MAX_POOL_SIZE),
            connect_timeout=connect_timeout,
            options={**kwargs, "charset": charset},
        )
        super().__init__(config)
        self._pool: pooling.MySQLConnectionPool | None = None

    def connect(self) -> None:
        """Create the driver connection pool (opens ``pool_size`` connections)."""
        if self._pool is not None:
            return
        try:
            self._pool = pooling.MySQLConnectionPool(
                pool_name=f"panelstore_{next(_pool_ids)}",
                pool_size=self._config.pool_size,
                host=self._config.host,
                port=self._config.port,
                database=self._config.database,
                user=self._config.username,
                password=self._config.password or "",
                charset=self._config.options.get("charset", "utf8mb4"),
                connection_timeout=self._config.connect_timeout,
                autocommit=False,
                pool_reset_session=True,
            )
        except mysql.connector.Error as e:
            raise DatabaseConnectionError(
                f"Failed to connect to {self._config.to_connection_string()}: {e}",
                cause=e,
            ) from e
        self._connected = True

    def disconnect(self) -> None:
        """Drop the pool; idle driver connections are closed."""
        pool = self._pool
        self._pool = None
        self._connected = False
        if pool is not None:
            # mysql.connector has no public call that closes a pool; this
            # private helper closes the idle connections. Borrowed ones are
            # closed by their holders on release.
            pool._remove_connections()

    def get_connection(self) -> Any:
        """Borrow a connection from the driver pool."""
        if self._pool is None:
            self.connect()
        try:
            return self._pool.get_connection()
        except mysql.connector.Error as e:
            raise DatabaseConnectionError(f"MySQL pool error: {e}", cause=e) from e

    def release_connection(self, conn: Any) -> None:
        """Return a connection to the pool (``close()`` on a pooled connection)."""
        conn.close()

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """Borrow, commit or roll back, and return the connection."""
        conn = self.get_connection()
        try:
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            self.release_connection(conn)

    @contextmanager
    def interrupt_after(self, conn: Any, deadline: float | None) -> Iterator[None]:
        """Cap statements on ``conn`` at the time left before ``deadline``.

        MariaDB's ``max_statement_time`` (seconds) bounds every statement;
        MySQL's ``MAX_EXECUTION_TIME`` (milliseconds) bounds ``SELECT`` only.
        The limit is cleared on exit; the driver pool also resets session
        state when the connection is returned.
        """
        if deadline is None:
            yield
            return
        millis = max(1, int((deadline - time.monotonic()) * 1000))
        variable = self._statement_time_variable(conn)
        limit = f"{millis / 1000:.3f}" if variable == "max_statement_time" else str(millis)
        self._set_session(conn, variable, limit)
        try:
            yield
        finally:
            if conn.is_connected():
                self._set_session(conn, variable, "0")

    @staticmethod
    def _statement_time_variable(conn: Any) -> str:
        info = conn.get_server_info()
        if isinstance(info, str) and "mariadb" in info.lower():
            return "max_statement_time"
        return "MAX_EXECUTION_TIME"

    @staticmethod
    def _set_session(conn: Any, variable: str, value: str) -> None:
        cur = conn.cursor()
        try:
            cur.execute(f"SET SESSION {variable} = {value}")
        finally:
            cur.close()

    @staticmethod
    def is_statement_timeout(error: BaseException) -> bool:
        """Whether ``error`` is the server aborting a statement at its time limit."""
        return (
            isinstance(error, mysql.connector.Error)
            and error.errno in _STATEMENT_TIMEOUT_ERRNOS
        )

    def cursor(self, conn: Any) -> Any:
        return conn.cursor(dictionary=True)


__all__ = [
    "MySQLAdapter",
]
