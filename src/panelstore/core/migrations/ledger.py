"""Version ledger: the single persisted integer of applied migrations.

Stored as one row of ``schema_version``; the ``CHECK (id = 1)``
constraint makes a second row impossible.

* ``read()`` is read-or-create: ``INSERT OR IGNORE`` the zero row, then
  select it. Two concurrent initializers cannot both create it.
* ``advance(expected_prior, new_version)`` is a compare-and-set ``UPDATE
  ... WHERE version = ?``; zero affected rows means someone else moved the
  ledger and raises :class:`ConcurrentModification`.

The ledger never decreases: ``advance`` rejects a ``new_version`` that is
not greater than ``expected_prior``.
"""

from __future__ import annotations

from typing import Any

from panelstore.core.adapters.base import DatabaseAdapter
from panelstore.core.errors import ConcurrentModification, MigrationFailure

LEDGER_TABLE = "schema_version"


class VersionLedger:
    """Version ledger on the embedded engine.

    Methods take an optional ``conn`` so the runner can advance the ledger
    inside the same transaction as the step it records.
    """

    def __init__(self, adapter: DatabaseAdapter):
        self._adapter = adapter
        self._ensure_table()

    def _ensure_table(self) -> None:
        with self._adapter.transaction() as conn:
            self._adapter.run(
                conn,
                f"""
                CREATE TABLE IF NOT EXISTS {LEDGER_TABLE} (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    version INTEGER NOT NULL CHECK (version >= 0),
                    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
                )
                """,
            )

    def read(self, conn: Any = None) -> int:
        """Return the current version, creating the row with 0 if absent."""
        if conn is None:
            with self._adapter.transaction() as own:
                return self._read(own)
        return self._read(conn)

    def _read(self, conn: Any) -> int:
        d = self._adapter.dialect
        self._adapter.run(conn, d.insert_or_ignore(LEDGER_TABLE, ["id", "version"]), (1, 0))
        rows = self._adapter.fetch_all(conn, f"SELECT version FROM {LEDGER_TABLE} WHERE id = 1")
        return int(rows[0]["version"])

    def advance(self, expected_prior: int, new_version: int, conn: Any = None) -> None:
        """Move the ledger from ``expected_prior`` to ``new_version``."""
        if new_version <= expected_prior:
            raise MigrationFailure(
                f"Version ledger cannot move from {expected_prior} to {new_version}"
            )
        if conn is None:
            with self._adapter.transaction() as own:
                self._advance(own, expected_prior, new_version)
        else:
            self._advance(conn, expected_prior, new_version)

    def _advance(self, conn: Any, expected_prior: int, new_version: int) -> None:
        updated = self._adapter.run(
            conn,
            f"UPDATE {LEDGER_TABLE} SET version = ?, updated_at = datetime('now') "
            f"WHERE id = 1 AND version = ?",
            (new_version, expected_prior),
        )
        if updated != 1:
            rows = self._adapter.fetch_all(
                conn, f"SELECT version FROM {LEDGER_TABLE} WHERE id = 1"
            )
            actual = int(rows[0]["version"]) if rows else None
            raise ConcurrentModification(expected_prior, actual)


__all__ = ["LEDGER_TABLE", "VersionLedger"]
