"""Engine selector: which storage engine is active, and its external pool.

Manifesto:
    Readers on the dispatch path must always see a consistent pair of
    "active engine" and "pool". The selector never mutates state in place:
    ``reload()`` builds a complete new :class:`EngineState` and publishes it
    with a single reference assignment, so ``current()`` returns either the
    old snapshot or the new one.

Reload::

    reload(config)
      │ validate (external needs host, user, database)
      │ unchanged and already in effect? ──► return current
      ├─ embedded ───────────────────────► publish(EMBEDDED), retire old pool
      └─ external ─► build adapter, connect, ping, bootstrap schema
                        │ ok                  │ failure
                        ▼                     ▼
              publish(EXTERNAL, pool)   publish(EMBEDDED, error)   (fallback)
                        └────── retire old pool (drains, then closes)

Persisted form (``panel_settings`` key/value rows)::

    databaseEngine = sqlite | mariadb      dbHost, dbPort, dbUser,
                                           dbPassword, dbName
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from panelstore.core.adapters import DatabaseAdapter, get_adapter
from panelstore.core.ddl import ensure_table
from panelstore.core.errors import ConfigError, EngineUnreachable, InvalidConfigError
from panelstore.core.logging import get_logger
from panelstore.core.pool import ExternalPool
from panelstore.core.schema import TABLES, TableRegistry
from panelstore.core.settings import StorageSettings, get_settings

logger = get_logger(__name__)


class EngineKind(str, Enum):
    EMBEDDED = "embedded"
    EXTERNAL = "external"

    @classmethod
    def parse(cls, value: str | EngineKind | None) -> EngineKind:
        """Accept the enum values and the legacy ``sqlite``/``mariadb``/``mysql`` names."""
        if isinstance(value, EngineKind):
            return value
        normalized = (value or "embedded").strip().lower()
        if normalized in ("embedded", "sqlite"):
            return cls.EMBEDDED
        if normalized in ("external", "mariadb", "mysql"):
            return cls.EXTERNAL
        raise InvalidConfigError("databaseEngine", value)


# EngineConfig field -> panel_settings key
SETTINGS_KEYS: dict[str, str] = {
    "engine": "databaseEngine",
    "host": "dbHost",
    "port": "dbPort",
    "user": "dbUser",
    "password": "dbPassword",
    "database": "dbName",
}

DEFAULT_PORT = 3306


@dataclass(frozen=True)
class EngineConfig:
    """Administrator-editable engine configuration."""

    engine: EngineKind = EngineKind.EMBEDDED
    host: str = ""
    port: int = DEFAULT_PORT
    user: str = ""
    password: str = field(default="", repr=False)
    database: str = ""

    @property
    def is_external(self) -> bool:
        return self.engine is EngineKind.EXTERNAL

    @property
    def is_complete(self) -> bool:
        return bool(self.host and self.user and self.database)

    def validate(self) -> EngineConfig:
        """Raise :class:`InvalidConfigError` unless the config can be applied."""
        if self.is_external:
            for name in ("host", "user", "database"):
                if not getattr(self, name):
                    raise InvalidConfigError(
                        SETTINGS_KEYS[name],
                        getattr(self, name),
                        f"External engine requires {SETTINGS_KEYS[name]}",
                    )
        if not 0 < self.port < 65536:
            raise InvalidConfigError("dbPort", self.port)
        return self

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> EngineConfig:
        """Build from persisted keys (``dbHost``...) or field names (``host``...)."""

        def pick(name: str) -> Any:
            key = SETTINGS_KEYS[name]
            return data.get(key, data.get(name))

        raw_port = pick("port")
        try:
            port = int(raw_port) if raw_port not in (None, "") else DEFAULT_PORT
        except (TypeError, ValueError):
            raise InvalidConfigError("dbPort", raw_port) from None
        return cls(
            engine=EngineKind.parse(pick("engine")),
            host=str(pick("host") or "").strip(),
            port=port,
            user=str(pick("user") or "").strip(),
            password=str(pick("password") or ""),
            database=str(pick("database") or "").strip(),
        )

    def to_settings(self) -> dict[str, str]:
        """Persisted key/value form; the engine is stored by its legacy name."""
        return {
            "databaseEngine": "mariadb" if self.is_external else "sqlite",
            "dbHost": self.host,
            "dbPort": str(self.port),
            "dbUser": self.user,
            "dbPassword": self.password,
            "dbName": self.database,
        }

    def redacted(self) -> dict[str, Any]:
        return {
            "engine": self.engine.value,
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": "***" if self.password else "",
            "database": self.database,
        }


@dataclass(frozen=True)
class EngineState:
    """Immutable snapshot returned by :meth:`EngineSelector.current`.

    ``engine == EXTERNAL`` always comes with a pool.
    """

    engine: EngineKind
    config: EngineConfig = field(default_factory=EngineConfig)
    pool: ExternalPool | None = None
    reachable: bool | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        if self.engine is EngineKind.EXTERNAL and self.pool is None:
            raise ConfigError("External engine state requires a connection pool")

    @property
    def external_live(self) -> bool:
        return self.engine is EngineKind.EXTERNAL and self.pool is not None and self.pool.active


AdapterFactory = Callable[[EngineConfig, StorageSettings], DatabaseAdapter]


def mysql_adapter_factory(config: EngineConfig, settings: StorageSettings) -> DatabaseAdapter:
    """Default external adapter: MySQL/MariaDB through mysql-connector-python."""
    return get_adapter(
        "mariadb",
        host=config.host,
        port=config.port,
        database=config.database,
        username=config.user,
        password=config.password,
        pool_size=settings.pool_size,
        connect_timeout=settings.connect_timeout,
    )


class EngineSelector:
    """Owns the active engine state and the single external pool.

    Args:
        settings: Pool sizing and timeouts
        adapter_factory: Builds the external adapter for a config
        registry: Table registry whose migratable tables are bootstrapped
            on the external engine
    """

    def __init__(
        self,
        settings: StorageSettings | None = None,
        *,
        adapter_factory: AdapterFactory | None = None,
        registry: TableRegistry = TABLES,
    ):
        self._settings = settings or get_settings()
        self._factory = adapter_factory or mysql_adapter_factory
        self._registry = registry
        self._state = EngineState(EngineKind.EMBEDDED)
        self._reload_lock = threading.Lock()

    def current(self) -> EngineState:
        """Atomic read of the active state."""
        return self._state

    def reload(self, config: EngineConfig) -> EngineState:
        """Apply ``config``; falls back to embedded if the external engine is unreachable."""
        config.validate()
        with self._reload_lock:
            old = self._state
            if config == old.config and (
                old.external_live if config.is_external else old.engine is EngineKind.EMBEDDED
            ):
                logger.debug("engine.reload.unchanged", engine=old.engine.value)
                return old

            if not config.is_external:
                new = EngineState(EngineKind.EMBEDDED, config)
            else:
                try:
                    pool = self._establish(config)
                except EngineUnreachable as e:
                    logger.warning(
                        "engine.reload.fallback",
                        host=config.host,
                        port=config.port,
                        error=e.message,
                    )
                    new = EngineState(
                        EngineKind.EMBEDDED, config, reachable=False, error=e.message
                    )
                else:
                    new = EngineState(EngineKind.EXTERNAL, config, pool=pool, reachable=True)

            self._state = new
            if old.pool is not None:
                old.pool.retire()

        logger.info(
            "engine.reloaded",
            engine=new.engine.value,
            previous=old.engine.value,
            config=config.redacted(),
        )
        return new

    def _establish(self, config: EngineConfig) -> ExternalPool:
        """Connect, verify and bootstrap the external engine."""
        adapter: DatabaseAdapter | None = None
        try:
            adapter = self._factory(config, self._settings)
            adapter.connect()
            adapter.ping()
            self._bootstrap(adapter)
        except Exception as e:
            if adapter is not None:
                try:
                    adapter.disconnect()
                except Exception as close_error:
                    logger.debug("engine.disconnect_failed", error=str(close_error))
            raise EngineUnreachable(
                f"External engine {config.host}:{config.port}/{config.database} "
                f"is unreachable: {e}",
                cause=e,
            ).with_context(engine="external") from e

        return ExternalPool(
            adapter,
            size=min(self._settings.pool_size, adapter.config.pool_size),
            queue_limit=self._settings.queue_limit,
            acquire_timeout=self._settings.acquire_timeout,
        )

    def _bootstrap(self, adapter: DatabaseAdapter) -> list[str]:
        """Create migratable tables (and missing columns) on the external engine."""
        touched = []
        for table in self._registry:
            if not table.is_migratable:
                continue
            with adapter.transaction() as conn:
                ensure_table(adapter, conn, table)
            touched.append(table.name)
        logger.info("engine.external_schema_ready", tables=len(touched))
        return touched

    def init_external_schema(self) -> list[str]:
        """Re-run the external bootstrap on the live pool."""
        state = self._state
        if not state.external_live:
            raise EngineUnreachable("External engine is not active")
        with state.pool.lease() as adapter:
            return self._bootstrap(adapter)

    def status(self) -> dict[str, Any]:
        """``{engine, external: {configured, poolActive, reachable}, error}``."""
        state = self._state
        pool_active = state.external_live
        if pool_active:
            reachable = state.pool.ping()
        else:
            reachable = bool(state.reachable)
        return {
            "engine": state.engine.value,
            "external": {
                "configured": state.config.is_external and state.config.is_complete,
                "poolActive": pool_active,
                "reachable": reachable,
            },
            "error": state.error,
        }

    def close(self) -> None:
        """Drop back to embedded and retire any external pool."""
        with self._reload_lock:
            old = self._state
            self._state = EngineState(EngineKind.EMBEDDED, old.config)
            if old.pool is not None:
                old.pool.retire()


__all__ = [
    "EngineKind",
    "EngineConfig",
    "EngineState",
    "EngineSelector",
    "SETTINGS_KEYS",
    "mysql_adapter_factory",
]
