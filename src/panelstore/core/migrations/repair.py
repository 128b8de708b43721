"""Schema repair probe.

Runs once per boot, after the migration runner, against a fixed
allow-list of key/value settings tables that older installs are known to
have created with the wrong shape (for example a single wide row with
one column per setting). It must repair databases whose history
predates the steps that would have prevented the drift, which is why it
is not a versioned migration.

Repair of a drifted table::

    panel_settings ──rename──► _repair_panel_settings
                                   │  row by row
                                   ▼
    panel_settings(key, value) ◄── transplant (bad rows skipped, logged)
                                   │
                                   ▼
                              drop _repair_panel_settings
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from panelstore.core.adapters.base import DatabaseAdapter
from panelstore.core.errors import SchemaDrift
from panelstore.core.logging import get_logger
from panelstore.core.schema import TABLES, TableSchema

logger = get_logger(__name__)

REPAIR_ALLOW_LIST: tuple[str, ...] = ("panel_settings", "company_settings")

# Columns of a wide legacy row that are row identity, not settings.
_IDENTITY_COLUMNS = frozenset({"id", "rowid", "created_at", "updated_at"})


@dataclass
class RepairReport:
    """Outcome of probing one table."""

    table: str
    drifted: bool = False
    created: bool = False
    actual: list[str] = field(default_factory=list)
    transplanted: int = 0
    skipped: int = 0

    @property
    def repaired(self) -> bool:
        return self.drifted or self.created


def _encode(value: Any) -> str | None:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return json.dumps(value)


def _as_pairs(row: dict[str, Any], has_kv: bool) -> list[tuple[str, str | None]]:
    """Map one legacy row to ``(key, value)`` pairs."""
    if has_kv:
        key = row["key"]
        if key is None or key == "":
            raise ValueError("row has no key")
        return [(str(key), _encode(row.get("value")))]
    return [
        (name, _encode(value))
        for name, value in row.items()
        if name not in _IDENTITY_COLUMNS and value is not None
    ]


class SchemaRepairProbe:
    """Detects and rebuilds drifted key/value settings tables."""

    def __init__(
        self,
        adapter: DatabaseAdapter,
        tables: tuple[str, ...] = REPAIR_ALLOW_LIST,
    ):
        self._adapter = adapter
        self._tables = [TABLES.resolve(name) for name in tables]

    def run(self) -> list[RepairReport]:
        """Probe every allow-listed table and repair the drifted ones."""
        return [self.probe(table) for table in self._tables]

    def probe(self, table: TableSchema) -> RepairReport:
        report = RepairReport(table.name)
        expected = table.column_names
        with self._adapter.transaction() as conn:
            actual = self._adapter.table_columns(conn, table.name)
            report.actual = actual
            if not actual:
                self._adapter.run(
                    conn, self._adapter.dialect.create_table(table.name, table.columns)
                )
                report.created = True
                logger.info("repair.table_created", table=table.name)
                return report
            if sorted(actual) != sorted(expected):
                drift = SchemaDrift(table.name, expected=expected, actual=actual)
            elif table.primary_key not in self._adapter.unique_columns(conn, table.name):
                # upserts need ON CONFLICT on the key
                drift = SchemaDrift(
                    table.name,
                    expected=expected,
                    actual=actual,
                    reason=f"column {table.primary_key!r} is neither primary key nor unique",
                )
            else:
                return report

            logger.warning("repair.drift_detected", **drift.to_dict())
            report.drifted = True
            self._rebuild(conn, table, actual, report)

        logger.info(
            "repair.table_rebuilt",
            table=table.name,
            transplanted=report.transplanted,
            skipped=report.skipped,
        )
        return report

    def _rebuild(
        self,
        conn: Any,
        table: TableSchema,
        actual: list[str],
        report: RepairReport,
    ) -> None:
        a, d = self._adapter, self._adapter.dialect
        temp = f"_repair_{table.name}"
        if a.table_exists(conn, temp):
            a.run(conn, f"DROP TABLE {d.quote(temp)}")
        a.run(conn, f"ALTER TABLE {d.quote(table.name)} RENAME TO {d.quote(temp)}")
        a.run(conn, d.create_table(table.name, table.columns))

        has_kv = "key" in actual and "value" in actual
        upsert = d.upsert(table.name, ["key", "value"], ["key"])
        for row in a.fetch_all(conn, f"SELECT * FROM {d.quote(temp)}"):
            try:
                pairs = _as_pairs(row, has_kv)
                for key, value in pairs:
                    a.run(conn, upsert, (key, value))
            except Exception as e:
                report.skipped += 1
                logger.warning(
                    "repair.row_skipped",
                    table=table.name,
                    row=row,
                    error=str(e),
                )
                continue
            report.transplanted += len(pairs)

        a.run(conn, f"DROP TABLE {d.quote(temp)}")


__all__ = ["REPAIR_ALLOW_LIST", "RepairReport", "SchemaRepairProbe"]
