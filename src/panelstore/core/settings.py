"""Process settings for panelstore.

Static, environment-driven configuration (where the SQLite file lives,
pool sizing, timeouts). The *engine choice* is not here: it is runtime
state persisted in ``panel_settings`` and edited by administrators, see
:mod:`panelstore.core.engine`.

Environment variables use the ``PANELSTORE_`` prefix, e.g.
``PANELSTORE_DB_PATH=/var/lib/panel/panel.db``; a ``.env`` file is read
when present.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# mysql.connector refuses larger pools; the external pool mirrors the driver pool
MAX_POOL_SIZE = 32


class StorageSettings(BaseSettings):
    """Settings for the storage core and its collaborators.

    Fields
    ──────
    db_path          : SQLite file backing the embedded engine
    log_level        : structlog level
    json_logs        : force JSON (True) / console (False) / auto (None)
    pool_size        : external pool connections
    queue_limit      : callers allowed to wait for an external connection
    acquire_timeout  : seconds a caller may wait for an external connection
    connect_timeout  : seconds for establishing an external connection
    default_timeout  : per-dispatch deadline when the caller gives none
    bulk_batch_size  : rows per upsert batch in the bulk migrator
    backup_dir       : where embedded backups are written
    """

    model_config = SettingsConfigDict(
        env_prefix="PANELSTORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Embedded engine ──────────────────────────────────────────
    db_path: Path = Field(
        default_factory=lambda: Path.home() / ".panelstore" / "panel.db",
        description="SQLite database file",
    )

    # ── Observability ────────────────────────────────────────────
    debug: bool = False
    log_level: str = "INFO"
    json_logs: bool | None = None

    # ── External engine pool ─────────────────────────────────────
    pool_size: int = Field(default=5, ge=1, le=MAX_POOL_SIZE)
    queue_limit: int = Field(default=20, ge=0)
    acquire_timeout: float = Field(default=10.0, gt=0)
    connect_timeout: int = Field(default=5, ge=1)

    # ── Operations ───────────────────────────────────────────────
    default_timeout: float | None = Field(default=30.0, gt=0)
    bulk_batch_size: int = Field(default=500, ge=1)
    backup_dir: Path | None = Field(
        default=None,
        description="Directory for embedded backups (default: backups/ beside db_path)",
    )

    # ── HTTP collaborator ────────────────────────────────────────
    api_prefix: str = "/api/db"
    api_title: str = "panelstore"

    @property
    def backups_path(self) -> Path:
        return self.backup_dir or self.db_path.parent / "backups"


@lru_cache(maxsize=1)
def get_settings() -> StorageSettings:
    """Cached settings, loaded once per process."""
    return StorageSettings()


__all__ = ["StorageSettings", "get_settings"]
