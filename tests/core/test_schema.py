"""Tests for the closed table registry."""

from __future__ import annotations

import pytest

from panelstore.core.errors import ConfigError, UnknownTableError
from panelstore.core.schema import (
    TABLES,
    TENANT_COLUMN,
    Classification,
    TableRegistry,
    TableSchema,
    col,
    pk,
)


class TestClassification:
    def test_critical_tables(self):
        assert TABLES.critical == {
            "users",
            "roles",
            "permissions",
            "role_permissions",
            "license",
            "panel_settings",
        }

    def test_sets_are_disjoint(self):
        assert not TABLES.critical & TABLES.migratable
        assert not TABLES.critical & TABLES.unclassified
        assert not TABLES.migratable & TABLES.unclassified

    def test_every_table_is_classified_once(self):
        assert TABLES.critical | TABLES.migratable | TABLES.unclassified == set(TABLES.names())

    def test_routers_and_company_settings_stay_embedded(self):
        assert TABLES.unclassified == {"routers", "company_settings"}

    def test_business_tables_are_migratable(self):
        for name in ("sales_records", "customers", "inventory", "expenses", "notifications"):
            assert name in TABLES.migratable


class TestResolve:
    def test_alias(self):
        assert TABLES.resolve("sales").name == "sales_records"
        assert TABLES.resolve("panel-settings").name == "panel_settings"

    def test_unknown_table(self):
        with pytest.raises(UnknownTableError):
            TABLES.resolve("sqlite_master")

    def test_contains(self):
        assert "sales" in TABLES
        assert "sales_records" in TABLES
        assert "nope" not in TABLES
        assert 42 not in TABLES

    def test_tenant_scope(self):
        assert TABLES.resolve("customers").scope_column == TENANT_COLUMN
        assert TABLES.resolve("inventory").scope_column is None

    def test_settings_keyed_by_key(self):
        assert TABLES.resolve("panel_settings").primary_key == "key"


class TestDescriptorValidation:
    def test_requires_exactly_one_primary_key(self):
        with pytest.raises(ConfigError, match="primary key"):
            TableSchema("t", (col("a"),))

    def test_rejects_duplicate_columns(self):
        with pytest.raises(ConfigError, match="duplicate"):
            TableSchema("t", (pk(), col("a"), col("a")))

    def test_scope_column_must_exist(self):
        with pytest.raises(ConfigError, match="scope column"):
            TableSchema("t", (pk(),), scope_column=TENANT_COLUMN)

    def test_registry_rejects_duplicate_names(self):
        t = TableSchema("t", (pk(),), Classification.MIGRATABLE)
        with pytest.raises(ConfigError, match="twice"):
            TableRegistry([t, t])
