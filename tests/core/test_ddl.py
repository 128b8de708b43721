"""Tests for the idempotent DDL primitives."""

from __future__ import annotations

import pytest

from panelstore.core.ddl import ColumnOutcome, ensure_column, ensure_table
from panelstore.core.errors import SchemaError
from panelstore.core.schema import TABLES, col


class TestEnsureColumn:
    def test_adds_missing_column(self, embedded):
        embedded.execute("CREATE TABLE t (id TEXT PRIMARY KEY)")
        with embedded.transaction() as conn:
            outcome = ensure_column(embedded, conn, "t", col("note"))
            assert outcome is ColumnOutcome.ADDED
            assert embedded.table_columns(conn, "t") == ["id", "note"]

    def test_present_column_executes_nothing(self, embedded):
        embedded.execute("CREATE TABLE t (id TEXT PRIMARY KEY, note TEXT)")
        with embedded.transaction() as conn:
            assert ensure_column(embedded, conn, "t", col("note")) is ColumnOutcome.PRESENT
            assert embedded.table_columns(conn, "t") == ["id", "note"]

    def test_missing_table_is_fatal(self, embedded):
        with embedded.transaction() as conn:
            with pytest.raises(SchemaError, match="does not exist"):
                ensure_column(embedded, conn, "nope", col("note"))

    def test_failed_alter_is_fatal(self, embedded):
        embedded.execute("CREATE TABLE t (id TEXT PRIMARY KEY)")
        with embedded.transaction() as conn:
            with pytest.raises(SchemaError):
                # SQLite rejects a non-constant default on ADD COLUMN
                ensure_column(embedded, conn, "t", col("stamp", default="(datetime('now'))"))

    def test_column_with_default(self, embedded):
        embedded.execute("CREATE TABLE t (id TEXT PRIMARY KEY)")
        embedded.execute("INSERT INTO t VALUES ('a')")
        with embedded.transaction() as conn:
            ensure_column(embedded, conn, "t", col("n", "INTEGER", default="0"))
        assert embedded.query("SELECT n FROM t") == [{"n": 0}]


class TestEnsureTable:
    def test_creates_absent_table(self, embedded):
        schema = TABLES.resolve("expenses")
        with embedded.transaction() as conn:
            assert ensure_table(embedded, conn, schema) == []
            assert embedded.table_columns(conn, "expenses") == schema.column_names

    def test_adds_descriptor_columns_to_old_table(self, embedded):
        embedded.execute('CREATE TABLE sales_records (id TEXT PRIMARY KEY, "date" TEXT)')
        schema = TABLES.resolve("sales")
        with embedded.transaction() as conn:
            added = ensure_table(embedded, conn, schema)
            assert "routerId" in added
            assert "date" not in added
            assert sorted(embedded.table_columns(conn, "sales_records")) == sorted(
                schema.column_names
            )

    def test_second_pass_is_a_no_op(self, embedded):
        schema = TABLES.resolve("customers")
        with embedded.transaction() as conn:
            ensure_table(embedded, conn, schema)
            assert ensure_table(embedded, conn, schema) == []
