"""Idempotent DDL primitives shared by migrations, repair and the router.

``ensure_column`` replaces "try ALTER TABLE and ignore the error": it
inspects the catalogue first and reports one of three outcomes.

============  ==========================================================
``ADDED``     the column was missing and has been added
``PRESENT``   the column already existed; nothing was executed
(raises)      the table is missing or the ALTER failed: ``SchemaError``
============  ==========================================================
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from panelstore.core.adapters.base import DatabaseAdapter
from panelstore.core.errors import SchemaError
from panelstore.core.logging import get_logger
from panelstore.core.schema import ColumnSpec, TableSchema

logger = get_logger(__name__)


class ColumnOutcome(str, Enum):
    ADDED = "added"
    PRESENT = "present"


def ensure_column(
    adapter: DatabaseAdapter,
    conn: Any,
    table: str,
    column: ColumnSpec,
) -> ColumnOutcome:
    """Add ``column`` to ``table`` unless it is already there."""
    existing = adapter.table_columns(conn, table)
    if not existing:
        raise SchemaError(f"Cannot add column {column.name!r}: table {table!r} does not exist")
    if column.name in existing:
        return ColumnOutcome.PRESENT
    try:
        adapter.run(conn, adapter.dialect.add_column(table, column))
    except Exception as e:
        raise SchemaError(
            f"Failed to add column {column.name!r} to {table!r}: {e}",
            cause=e,
        ).with_context(table=table, engine=adapter.dialect.name)
    logger.info("ddl.column_added", table=table, column=column.name, engine=adapter.dialect.name)
    return ColumnOutcome.ADDED


def ensure_table(adapter: DatabaseAdapter, conn: Any, table: TableSchema) -> list[str]:
    """Create ``table`` if absent and add any descriptor columns it lacks.

    Returns the names of columns that were added to an existing table.
    """
    if not adapter.table_exists(conn, table.name):
        adapter.run(conn, adapter.dialect.create_table(table.name, table.columns))
        logger.info("ddl.table_created", table=table.name, engine=adapter.dialect.name)
        return []
    added = []
    for column in table.columns:
        if column.primary_key:
            continue
        if ensure_column(adapter, conn, table.name, column) is ColumnOutcome.ADDED:
            added.append(column.name)
    return added


__all__ = ["ColumnOutcome", "ensure_column", "ensure_table"]
