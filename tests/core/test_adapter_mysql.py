"""Tests for the MySQL/MariaDB adapter with a mocked driver pool."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import mysql.connector
import pydantic
import pytest

from panelstore.core.adapters import MySQLAdapter, get_adapter
from panelstore.core.engine import EngineConfig, EngineKind, mysql_adapter_factory
from panelstore.core.errors import DatabaseConnectionError, StorageTimeoutError
from panelstore.core.router import StorageRouter
from panelstore.core.settings import StorageSettings

POOL = "panelstore.core.adapters.mysql.pooling.MySQLConnectionPool"


@pytest.fixture
def adapter():
    return MySQLAdapter(
        host="db.local",
        port=3307,
        database="panel",
        username="panel",
        password="pw",
        pool_size=3,
        connect_timeout=2,
    )


class TestConnect:
    def test_creates_driver_pool(self, adapter):
        with patch(POOL) as pool_cls:
            adapter.connect()
        kwargs = pool_cls.call_args.kwargs
        assert kwargs["host"] == "db.local"
        assert kwargs["port"] == 3307
        assert kwargs["pool_size"] == 3
        assert kwargs["connection_timeout"] == 2
        assert kwargs["autocommit"] is False
        assert adapter.is_connected

    def test_connect_is_idempotent(self, adapter):
        with patch(POOL) as pool_cls:
            adapter.connect()
            adapter.connect()
        assert pool_cls.call_count == 1

    def test_driver_error_is_wrapped(self, adapter):
        with patch(POOL, side_effect=mysql.connector.Error("Access denied")):
            with pytest.raises(DatabaseConnectionError, match="db.local:3307"):
                adapter.connect()
        assert not adapter.is_connected

    def test_pool_size_is_capped(self):
        assert MySQLAdapter(pool_size=100).config.pool_size == 32

    def test_settings_reject_pool_beyond_driver_limit(self):
        with pytest.raises(pydantic.ValidationError):
            StorageSettings(_env_file=None, pool_size=33)
        assert StorageSettings(_env_file=None, pool_size=32).pool_size == 32

    def test_ddl_is_not_transactional(self, adapter):
        assert adapter.supports_transactional_ddl is False
        assert adapter.dialect.name == "mysql"


class TestTransaction:
    def test_commit_and_release(self, adapter):
        conn = MagicMock()
        with patch(POOL) as pool_cls:
            pool_cls.return_value.get_connection.return_value = conn
            with adapter.transaction() as c:
                assert c is conn
        conn.commit.assert_called_once()
        conn.rollback.assert_not_called()
        conn.close.assert_called_once()

    def test_rollback_and_release(self, adapter):
        conn = MagicMock()
        with patch(POOL) as pool_cls:
            pool_cls.return_value.get_connection.return_value = conn
            with pytest.raises(RuntimeError):
                with adapter.transaction():
                    raise RuntimeError("boom")
        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
        conn.close.assert_called_once()

    def test_dictionary_cursor(self, adapter):
        conn = MagicMock()
        conn.cursor.return_value.fetchall.return_value = [{"name": "id"}]
        with patch(POOL) as pool_cls:
            pool_cls.return_value.get_connection.return_value = conn
            with adapter.transaction() as c:
                assert adapter.table_columns(c, "expenses") == ["id"]
        conn.cursor.assert_called_with(dictionary=True)

    def test_pool_exhausted_is_wrapped(self, adapter):
        with patch(POOL) as pool_cls:
            pool_cls.return_value.get_connection.side_effect = mysql.connector.errors.PoolError(
                "Failed getting connection; pool exhausted"
            )
            with pytest.raises(DatabaseConnectionError):
                adapter.get_connection()

    def test_disconnect_drops_pool(self, adapter):
        # autospec: fails if the driver renames its pool cleanup helper
        with patch(POOL, autospec=True) as pool_cls:
            adapter.connect()
            adapter.disconnect()
        pool_cls.return_value._remove_connections.assert_called_once()
        assert not adapter.is_connected

    def test_pool_resets_session_on_release(self, adapter):
        with patch(POOL) as pool_cls:
            adapter.connect()
        assert pool_cls.call_args.kwargs["pool_reset_session"] is True


def _session_statements(conn) -> list[str]:
    return [c.args[0] for c in conn.cursor.return_value.execute.call_args_list]


class TestStatementDeadline:
    def test_no_deadline_sets_nothing(self, adapter):
        conn = MagicMock()
        with adapter.interrupt_after(conn, None):
            pass
        conn.cursor.assert_not_called()

    def test_mysql_sets_and_clears_max_execution_time(self, adapter):
        conn = MagicMock()
        conn.get_server_info.return_value = "8.0.36"
        with patch("panelstore.core.adapters.mysql.time.monotonic", return_value=100.0):
            with adapter.interrupt_after(conn, 102.5):
                pass
        assert _session_statements(conn) == [
            "SET SESSION MAX_EXECUTION_TIME = 2500",
            "SET SESSION MAX_EXECUTION_TIME = 0",
        ]

    def test_mariadb_uses_max_statement_time_in_seconds(self, adapter):
        conn = MagicMock()
        conn.get_server_info.return_value = "10.11.6-MariaDB-log"
        with patch("panelstore.core.adapters.mysql.time.monotonic", return_value=100.0):
            with adapter.interrupt_after(conn, 101.25):
                pass
        assert _session_statements(conn) == [
            "SET SESSION max_statement_time = 1.250",
            "SET SESSION max_statement_time = 0",
        ]

    def test_expired_deadline_still_sets_a_positive_limit(self, adapter):
        conn = MagicMock()
        conn.get_server_info.return_value = "8.0.36"
        with patch("panelstore.core.adapters.mysql.time.monotonic", return_value=200.0):
            with adapter.interrupt_after(conn, 100.0):
                pass
        assert _session_statements(conn)[0] == "SET SESSION MAX_EXECUTION_TIME = 1"

    def test_limit_not_cleared_on_dead_connection(self, adapter):
        conn = MagicMock()
        conn.get_server_info.return_value = "8.0.36"
        conn.is_connected.return_value = False
        with pytest.raises(RuntimeError):
            with adapter.interrupt_after(conn, 1e12):
                raise RuntimeError("lost")
        assert len(_session_statements(conn)) == 1

    @pytest.mark.parametrize("errno", [3024, 1969])
    def test_server_timeout_errors_are_recognised(self, errno):
        err = mysql.connector.errors.DatabaseError("interrupted", errno=errno)
        assert MySQLAdapter.is_statement_timeout(err)

    def test_other_errors_are_not_timeouts(self):
        assert not MySQLAdapter.is_statement_timeout(
            mysql.connector.errors.ProgrammingError("syntax", errno=1064)
        )
        assert not MySQLAdapter.is_statement_timeout(RuntimeError("boom"))

    def test_router_maps_server_timeout_to_storage_timeout(self, adapter):
        conn = MagicMock()
        conn.get_server_info.return_value = "8.0.36"
        conn.cursor.return_value.execute.side_effect = [
            None,
            mysql.connector.errors.DatabaseError(
                "maximum statement execution time exceeded", errno=3024
            ),
            None,
        ]
        selector = MagicMock()
        router = StorageRouter(adapter, selector)
        with patch(POOL) as pool_cls:
            pool_cls.return_value.get_connection.return_value = conn
            with pytest.raises(StorageTimeoutError):
                router.dispatch("roles", "read", {"id": "r1"}, timeout=30)
        conn.rollback.assert_called_once()


class TestFactories:
    def test_registry_alias(self):
        assert isinstance(get_adapter("mariadb", host="h"), MySQLAdapter)

    def test_default_external_factory(self, settings):
        config = EngineConfig(
            engine=EngineKind.EXTERNAL, host="db.local", user="u", password="p", database="d"
        )
        adapter = mysql_adapter_factory(config, settings)
        assert isinstance(adapter, MySQLAdapter)
        assert adapter.config.host == "db.local"
        assert adapter.config.username == "u"
        assert adapter.config.pool_size == settings.pool_size
        assert not adapter.is_connected
