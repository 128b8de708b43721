"""Database adapters for the embedded and external engines.

Architecture::

    DatabaseAdapter (base.py)        Abstract base: lifecycle, transactions,
        |                            row and catalogue helpers
        |-- SQLiteAdapter            stdlib sqlite3, embedded engine
        |-- MySQLAdapter             mysql-connector-python, external engine

    AdapterRegistry (registry.py)    name -> adapter class
    DatabaseConfig (types.py)        connection parameters
    DatabaseType (types.py)          enum of supported backends

Guardrails:
    ❌ ``conn.execute("SELECT * FROM t WHERE id=" + user_input)``
    ✅ ``adapter.fetch_all(conn, sql, [user_input])``
    ❌ ``adapter = MySQLAdapter(...)`` in routing code
    ✅ ``adapter = get_adapter("mysql", ...)``
"""

from .base import DatabaseAdapter
from .mysql import MySQLAdapter
from .registry import AdapterRegistry, adapter_registry, get_adapter
from .sqlite import SQLiteAdapter
from .types import DatabaseConfig, DatabaseType

__all__ = [
    "DatabaseType",
    "DatabaseConfig",
    "DatabaseAdapter",
    "SQLiteAdapter",
    "MySQLAdapter",
    "AdapterRegistry",
    "adapter_registry",
    "get_adapter",
]
