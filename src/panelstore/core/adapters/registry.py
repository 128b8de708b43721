"""Adapter lookup by backend name.

The engine selector builds its external adapter through :func:`get_adapter`
rather than naming ``MySQLAdapter`` directly. Names accepted by the panel's
persisted settings (``mariadb``) resolve to the same backends as the
:class:`DatabaseType` values.

Usage:
    adapter = get_adapter(DatabaseType.SQLITE, path="panel.db")
    adapter = get_adapter("mariadb", host="db.local", database="panel")
"""

from __future__ import annotations

from typing import Any

from panelstore.core.errors import ConfigError

from .base import DatabaseAdapter
from .mysql import MySQLAdapter
from .sqlite import SQLiteAdapter
from .types import DatabaseType

_ALIASES: dict[str, DatabaseType] = {"mariadb": DatabaseType.MYSQL}


class AdapterRegistry:
    """Maps each :class:`DatabaseType` to the adapter class serving it."""

    def __init__(self):
        self._classes: dict[DatabaseType, type[DatabaseAdapter]] = {
            DatabaseType.SQLITE: SQLiteAdapter,
            DatabaseType.MYSQL: MySQLAdapter,
        }

    def resolve(self, name: DatabaseType | str) -> DatabaseType:
        if isinstance(name, DatabaseType):
            return name
        key = name.strip().lower()
        if key in _ALIASES:
            return _ALIASES[key]
        try:
            return DatabaseType(key)
        except ValueError:
            raise ConfigError(f"Unknown database adapter: {name}") from None

    def create(self, name: DatabaseType | str, **kwargs: Any) -> DatabaseAdapter:
        return self._classes[self.resolve(name)](**kwargs)

    def names(self) -> list[str]:
        return sorted([t.value for t in self._classes] + list(_ALIASES))


adapter_registry = AdapterRegistry()


def get_adapter(db_type: DatabaseType | str, **kwargs: Any) -> DatabaseAdapter:
    """Build an unconnected adapter for ``db_type``."""
    return adapter_registry.create(db_type, **kwargs)


__all__ = [
    "AdapterRegistry",
    "adapter_registry",
    "get_adapter",
]
