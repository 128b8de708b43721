"""
Shared pytest fixtures for panelstore tests.

This module provides:
- Embedded SQLite adapters on temporary files (fresh and migrated)
- Test settings with small pools and short timeouts
- External adapter factories: a second SQLite file standing in for the
  external engine, and one that always fails to connect
- A booted ``StorageService``

Usage:
    def test_something(service, external_config):
        service.apply_engine_config(external_config)
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

from panelstore.core.adapters import SQLiteAdapter
from panelstore.core.engine import EngineConfig, EngineKind, EngineSelector
from panelstore.core.errors import DatabaseConnectionError
from panelstore.core.migrations import MigrationRunner
from panelstore.core.settings import StorageSettings
from panelstore.core.storage import StorageService

# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark storage-service and API tests as integration, the rest as unit."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if markers.intersection({"unit", "integration"}):
            continue
        path = str(item.fspath)
        if "test_storage" in path or "/api/" in path or "/cli/" in path:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    """CLI tests configure logging; restore structlog defaults afterwards."""
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


# =============================================================================
# Settings and adapters
# =============================================================================


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "panel.db"


@pytest.fixture
def external_path(tmp_path: Path) -> Path:
    return tmp_path / "external.db"


@pytest.fixture
def settings(db_path: Path) -> StorageSettings:
    return StorageSettings(
        _env_file=None,
        db_path=db_path,
        pool_size=2,
        queue_limit=2,
        acquire_timeout=1.0,
        default_timeout=10.0,
        bulk_batch_size=2,
    )


@pytest.fixture
def embedded(db_path: Path) -> Iterator[SQLiteAdapter]:
    """A connected, empty embedded adapter."""
    adapter = SQLiteAdapter(str(db_path))
    adapter.connect()
    yield adapter
    adapter.disconnect()


@pytest.fixture
def migrated(embedded: SQLiteAdapter) -> SQLiteAdapter:
    """Embedded adapter with every shipped migration applied."""
    MigrationRunner(embedded).apply_pending().raise_on_failure()
    return embedded


@pytest.fixture
def external_db(external_path: Path) -> Iterator[SQLiteAdapter]:
    """Direct handle on the file behind the stand-in external engine."""
    adapter = SQLiteAdapter(str(external_path))
    adapter.connect()
    yield adapter
    adapter.disconnect()


# =============================================================================
# External engine stand-ins
# =============================================================================


@pytest.fixture
def external_factory(external_path: Path):
    """Adapter factory that serves the external engine from a second SQLite file.

    ``factory.calls`` records the configs it was asked to connect.
    """

    def factory(config: EngineConfig, settings: StorageSettings) -> SQLiteAdapter:
        factory.calls.append(config)
        return SQLiteAdapter(str(external_path))

    factory.calls = []
    return factory


class _UnreachableAdapter(SQLiteAdapter):
    def connect(self) -> None:
        raise DatabaseConnectionError("Can't connect to MySQL server (111 Connection refused)")


@pytest.fixture
def unreachable_factory(tmp_path: Path):
    def factory(config: EngineConfig, settings: StorageSettings) -> SQLiteAdapter:
        return _UnreachableAdapter(str(tmp_path / "never.db"))

    return factory


@pytest.fixture
def external_config() -> EngineConfig:
    return EngineConfig(
        engine=EngineKind.EXTERNAL,
        host="db.local",
        port=3306,
        user="panel",
        password="s3cret",
        database="panel",
    )


@pytest.fixture
def selector(settings: StorageSettings, external_factory) -> Iterator[EngineSelector]:
    sel = EngineSelector(settings, adapter_factory=external_factory)
    yield sel
    sel.close()


# =============================================================================
# Storage service
# =============================================================================


@pytest.fixture
def service(settings: StorageSettings, external_factory) -> Iterator[StorageService]:
    """A booted service whose external engine is a second SQLite file."""
    svc = StorageService(settings, adapter_factory=external_factory)
    svc.initialize_storage()
    yield svc
    svc.close()
