"""Backend identifiers and adapter connection parameters."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class DatabaseType(str, Enum):
    SQLITE = "sqlite"
    MYSQL = "mysql"


@dataclass
class DatabaseConfig:
    """Connection parameters held by an adapter.

    The embedded engine only reads ``path`` and ``readonly``; the external
    engine reads the network fields, ``pool_size`` and ``connect_timeout``.
    """

    db_type: DatabaseType = DatabaseType.SQLITE
    path: str | None = None
    readonly: bool = False

    host: str = "localhost"
    port: int = 3306
    database: str = ""
    username: str | None = None
    password: str | None = None
    pool_size: int = 5
    connect_timeout: int = 10

    # driver keyword arguments passed through unchanged
    options: dict[str, Any] = field(default_factory=dict)

    def to_connection_string(self) -> str:
        """Location for logs and error messages; the password is always masked."""
        if self.db_type is DatabaseType.SQLITE:
            return self.path or ":memory:"
        secret = ":***" if self.password else ""
        return f"mysql://{self.username or ''}{secret}@{self.host}:{self.port}/{self.database}"


__all__ = [
    "DatabaseType",
    "DatabaseConfig",
]
