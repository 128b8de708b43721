"""Backups of the embedded engine.

A backup is a full, consistent copy of the SQLite file taken with the
online backup API while the service keeps serving. Files live in one
directory (``settings.backups_path``) and are addressed by bare file name
only; anything that looks like a path is refused.

Lifecycle::

    create()    ──► panel-20240501-101500-123456.sqlite
    available() ──► newest first
    restore()   ──► quick_check the file, snapshot current state as
                    pre-restore-*.sqlite, copy the file over the live DB
    delete()

Only the embedded engine is backed up; the external engine is managed by
its own tooling.
"""

from __future__ import annotations

import re
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from panelstore.core.adapters import SQLiteAdapter
from panelstore.core.errors import BackupError, BackupNotFound, ValidationError
from panelstore.core.logging import get_logger

logger = get_logger(__name__)

BACKUP_SUFFIX = ".sqlite"

_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*\.sqlite$")


@dataclass(frozen=True)
class BackupInfo:
    """One backup file."""

    name: str
    size: int
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "size": self.size,
            "createdAt": self.created_at.isoformat(),
        }


class BackupManager:
    """Creates, lists, deletes and restores backups of one SQLite adapter."""

    def __init__(self, adapter: SQLiteAdapter, directory: Path):
        self._adapter = adapter
        self.directory = Path(directory)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def available(self) -> list[BackupInfo]:
        """Backups in the directory, newest first."""
        if not self.directory.is_dir():
            return []
        found = [
            self._info(path)
            for path in self.directory.iterdir()
            if path.is_file() and _NAME.match(path.name)
        ]
        return sorted(found, key=lambda b: (b.created_at, b.name), reverse=True)

    def status(self) -> dict[str, Any]:
        backups = self.available()
        return {
            "directory": str(self.directory),
            "count": len(backups),
            "totalBytes": sum(b.size for b in backups),
            "latest": backups[0].to_dict() if backups else None,
        }

    def path_for(self, name: str) -> Path:
        """Resolve ``name`` inside the backup directory.

        Raises:
            ValidationError: ``name`` is not a bare ``*.sqlite`` file name
            BackupNotFound: no such backup
        """
        if not _NAME.match(name) or ".." in name:
            raise ValidationError(f"Invalid backup name: {name!r}")
        path = self.directory / name
        if not path.is_file():
            raise BackupNotFound(f"Backup {name!r} not found")
        return path

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create(self, prefix: str = "panel") -> BackupInfo:
        """Write a new backup of the live database."""
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._new_path(prefix)
        try:
            self._adapter.backup(path)
        except sqlite3.Error as e:
            path.unlink(missing_ok=True)
            raise BackupError(f"Backup to {path.name!r} failed: {e}", cause=e) from e
        info = self._info(path)
        logger.info("backup.created", name=info.name, size=info.size)
        return info

    def delete(self, name: str) -> None:
        path = self.path_for(name)
        path.unlink()
        logger.info("backup.deleted", name=name)

    def restore(self, name: str) -> BackupInfo:
        """Replace the live database with backup ``name``.

        The current contents are saved first as a ``pre-restore`` backup,
        which is returned.
        """
        path = self.path_for(name)
        self._verify(path)
        snapshot = self.create(prefix="pre-restore")
        try:
            self._adapter.restore(path)
        except sqlite3.Error as e:
            raise BackupError(
                f"Restore from {name!r} failed; previous state kept in {snapshot.name!r}: {e}",
                cause=e,
            ) from e
        logger.info("backup.restored", name=name, snapshot=snapshot.name)
        return snapshot

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _new_path(self, prefix: str) -> Path:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S-%f")
        path = self.directory / f"{prefix}-{stamp}{BACKUP_SUFFIX}"
        n = 1
        while path.exists():
            path = self.directory / f"{prefix}-{stamp}-{n}{BACKUP_SUFFIX}"
            n += 1
        return path

    @staticmethod
    def _info(path: Path) -> BackupInfo:
        stat = path.stat()
        return BackupInfo(
            name=path.name,
            size=stat.st_size,
            created_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )

    @staticmethod
    def _verify(path: Path) -> None:
        """Refuse files that are not intact SQLite databases."""
        try:
            conn = sqlite3.connect(f"{path.resolve().as_uri()}?mode=ro", uri=True)
            try:
                result = conn.execute("PRAGMA quick_check").fetchone()[0]
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise BackupError(f"Backup {path.name!r} is not a readable database: {e}", cause=e) from e
        if result != "ok":
            raise BackupError(f"Backup {path.name!r} failed its integrity check: {result}")


__all__ = ["BACKUP_SUFFIX", "BackupInfo", "BackupManager"]
