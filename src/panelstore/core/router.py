"""Storage router: per-table, per-request choice of engine.

Manifesto:
    Security tables never leave the embedded engine, whatever the global
    engine setting says. Business tables follow the administrator's choice
    only while a live external pool exists. Tenant-scoped lists never fall
    back to "everything" when the tenant is missing.

Decision rule (evaluated in this order on every dispatch)::

    1. table ∈ critical                          → embedded  (unconditional)
    2. engine = external ∧ live pool ∧ migratable → external
    3. otherwise                                  → embedded

Operations::

    create  {col: value, ...}        id generated when absent     → [row]
    read    {"id": ...}              single row                   → [row] | []
            {routerId?, col: v...}   equality filters             → [rows]
    update  {"id": ..., col: v...}                                → [row] | []
    delete  {"id": ...}                                           → [{id}] | []
    clear   {routerId?}              scoped tables need routerId  → [{"deleted": n}]

Guardrails:
    ❌ building SQL from payload keys without checking the table descriptor
    ✅ every payload key must be a column of the resolved ``TableSchema``
    ❌ retrying a failed write until it succeeds
    ✅ one ``ensure_column`` pass, one retry, then the error surfaces
"""

from __future__ import annotations

import sqlite3
import time
import uuid
from collections.abc import Mapping
from enum import Enum
from typing import Any

from panelstore.core.adapters.base import DatabaseAdapter
from panelstore.core.adapters.mysql import MySQLAdapter
from panelstore.core.ddl import ensure_column
from panelstore.core.engine import EngineKind, EngineSelector, EngineState
from panelstore.core.errors import (
    CriticalTableViolation,
    PanelStoreError,
    PoolRetired,
    SchemaError,
    StorageError,
    StorageTimeoutError,
    ValidationError,
)
from panelstore.core.logging import get_logger
from panelstore.core.schema import TABLES, TableRegistry, TableSchema

logger = get_logger(__name__)


class Operation(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    CLEAR = "clear"

    @property
    def is_write(self) -> bool:
        return self is not Operation.READ


_WRITES_WITH_PAYLOAD = (Operation.CREATE, Operation.UPDATE)


class StorageRouter:
    """Dispatches table-level CRUD calls to the embedded or external engine.

    Args:
        embedded: Adapter for the embedded engine (always available)
        selector: Source of the active engine state
        registry: Closed table registry
        default_timeout: Deadline in seconds when the caller passes none
    """

    def __init__(
        self,
        embedded: DatabaseAdapter,
        selector: EngineSelector,
        *,
        registry: TableRegistry = TABLES,
        default_timeout: float | None = None,
    ):
        self._embedded = embedded
        self._selector = selector
        self._registry = registry
        self._default_timeout = default_timeout

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def route(self, table: TableSchema, state: EngineState | None = None) -> EngineKind:
        """Engine that serves ``table`` under ``state`` (default: current)."""
        critical = table.name in self._registry.critical
        if critical and table.name in self._registry.migratable:
            raise CriticalTableViolation(
                f"Table {table.name!r} is classified both critical and migratable"
            ).with_context(table=table.name)
        if critical:
            return EngineKind.EMBEDDED
        state = state or self._selector.current()
        if state.external_live and table.name in self._registry.migratable:
            return EngineKind.EXTERNAL
        return EngineKind.EMBEDDED

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch(
        self,
        table: str,
        operation: str | Operation,
        params: Mapping[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> list[dict[str, Any]]:
        """Run one CRUD operation and return the resulting rows.

        Raises:
            UnknownTableError: ``table`` is not in the registry
            ValidationError: unknown operation or payload column
            StorageTimeoutError: the deadline expired
            StorageError: the engine rejected the operation
        """
        schema = self._registry.resolve(table)
        try:
            op = Operation(operation)
        except ValueError:
            raise ValidationError(f"Unknown operation: {operation!r}") from None
        params = dict(params or {})
        self._check_columns(schema, params)

        if timeout is None:
            timeout = self._default_timeout
        deadline = time.monotonic() + timeout if timeout else None

        log = logger.bind(table=schema.name, operation=op.value)
        try:
            return self._dispatch(schema, op, params, deadline, log)
        except (ValidationError, CriticalTableViolation, StorageError):
            raise
        except Exception as e:
            if deadline is not None and (
                time.monotonic() >= deadline or _is_interrupt(e)
            ):
                raise StorageTimeoutError(
                    f"{op.value} on {schema.name} exceeded its deadline",
                    table=schema.name,
                    operation=op.value,
                    cause=e,
                ) from e
            log.warning("router.operation_failed", error=str(e))
            raise StorageError(
                f"{op.value} on {schema.name} failed",
                table=schema.name,
                operation=op.value,
                cause=e,
            ) from e

    def _dispatch(
        self,
        schema: TableSchema,
        op: Operation,
        params: dict[str, Any],
        deadline: float | None,
        log: Any,
    ) -> list[dict[str, Any]]:
        if op is Operation.CREATE and not params.get(schema.primary_key):
            params[schema.primary_key] = uuid.uuid4().hex

        state = self._selector.current()
        if self.route(schema, state) is EngineKind.EMBEDDED:
            return self._execute(self._embedded, schema, op, params, deadline)
        try:
            return self._on_pool(state, schema, op, params, deadline, log)
        except PoolRetired:
            # A reload retired the pool between routing and leasing; re-route once.
            log.info("router.pool_retired_reroute")
        state = self._selector.current()
        if self.route(schema, state) is EngineKind.EMBEDDED:
            return self._execute(self._embedded, schema, op, params, deadline)
        return self._on_pool(state, schema, op, params, deadline, log)

    def _on_pool(
        self,
        state: EngineState,
        schema: TableSchema,
        op: Operation,
        params: dict[str, Any],
        deadline: float | None,
        log: Any,
    ) -> list[dict[str, Any]]:
        if schema.name in self._registry.critical:
            raise CriticalTableViolation(
                f"Refusing to route critical table {schema.name!r} externally"
            ).with_context(table=schema.name)
        with state.pool.lease(deadline) as adapter:
            return self._execute_external(adapter, schema, op, params, deadline, log)

    def _execute_external(
        self,
        adapter: DatabaseAdapter,
        schema: TableSchema,
        op: Operation,
        params: dict[str, Any],
        deadline: float | None,
        log: Any,
    ) -> list[dict[str, Any]]:
        try:
            return self._execute(adapter, schema, op, params, deadline)
        except PanelStoreError:
            raise
        except Exception as e:
            if op not in _WRITES_WITH_PAYLOAD or _is_interrupt(e):
                raise
            try:
                added = self._add_missing_columns(adapter, schema, params)
            except SchemaError as err:
                # ALTER refused by the engine
                log.warning("router.column_add_failed", error=err.message)
                raise StorageError(
                    f"{op.value} on {schema.name} failed",
                    table=schema.name,
                    operation=op.value,
                    cause=err,
                ) from err
            if not added:
                raise
            log.info("router.column_added", columns=added)
        # Bounded retry: a second failure propagates.
        return self._execute(adapter, schema, op, params, deadline)

    def _add_missing_columns(
        self,
        adapter: DatabaseAdapter,
        schema: TableSchema,
        params: Mapping[str, Any],
    ) -> list[str]:
        with adapter.transaction() as conn:
            existing = set(adapter.table_columns(conn, schema.name))
            missing = [name for name in params if name not in existing]
            for name in missing:
                ensure_column(adapter, conn, schema.name, schema.column(name))
        return missing

    def _execute(
        self,
        adapter: DatabaseAdapter,
        schema: TableSchema,
        op: Operation,
        params: dict[str, Any],
        deadline: float | None,
    ) -> list[dict[str, Any]]:
        if deadline is not None and time.monotonic() >= deadline:
            raise StorageTimeoutError(
                f"{op.value} on {schema.name} exceeded its deadline",
                table=schema.name,
                operation=op.value,
            )
        handler = getattr(self, f"_op_{op.value}")
        with adapter.transaction() as conn, adapter.interrupt_after(conn, deadline):
            return handler(adapter, conn, schema, params)

    # ------------------------------------------------------------------
    # Operations (run inside one transaction)
    # ------------------------------------------------------------------

    def _select_by_key(
        self, adapter: DatabaseAdapter, conn: Any, schema: TableSchema, key: Any
    ) -> list[dict[str, Any]]:
        d = adapter.dialect
        return adapter.fetch_all(
            conn,
            f"SELECT * FROM {d.quote(schema.name)} "
            f"WHERE {d.quote(schema.primary_key)} = {d.placeholder(0)}",
            (key,),
        )

    def _op_create(self, adapter, conn, schema, params):
        columns = list(params)
        adapter.run(
            conn,
            adapter.dialect.insert(schema.name, columns),
            [params[c] for c in columns],
        )
        return self._select_by_key(adapter, conn, schema, params[schema.primary_key])

    def _op_read(self, adapter, conn, schema, params):
        key = schema.primary_key
        if key in params:
            return self._select_by_key(adapter, conn, schema, params[key])
        if schema.scope_column and not params.get(schema.scope_column):
            return []
        d = adapter.dialect
        filters = [(c, v) for c, v in params.items() if v is not None]
        sql = f"SELECT * FROM {d.quote(schema.name)}"
        if filters:
            sql += " WHERE " + " AND ".join(
                f"{d.quote(c)} = {d.placeholder(i)}" for i, (c, _) in enumerate(filters)
            )
        sql += f" ORDER BY {d.quote(key)}"
        return adapter.fetch_all(conn, sql, [v for _, v in filters])

    def _op_update(self, adapter, conn, schema, params):
        key = schema.primary_key
        if not params.get(key):
            raise ValidationError(f"update on {schema.name} requires {key!r}")
        changes = [c for c in params if c != key]
        if changes:
            d = adapter.dialect
            assignments = ", ".join(
                f"{d.quote(c)} = {d.placeholder(i)}" for i, c in enumerate(changes)
            )
            adapter.run(
                conn,
                f"UPDATE {d.quote(schema.name)} SET {assignments} "
                f"WHERE {d.quote(key)} = {d.placeholder(len(changes))}",
                [params[c] for c in changes] + [params[key]],
            )
        return self._select_by_key(adapter, conn, schema, params[key])

    def _op_delete(self, adapter, conn, schema, params):
        key = schema.primary_key
        if not params.get(key):
            raise ValidationError(f"delete on {schema.name} requires {key!r}")
        d = adapter.dialect
        deleted = adapter.run(
            conn,
            f"DELETE FROM {d.quote(schema.name)} WHERE {d.quote(key)} = {d.placeholder(0)}",
            (params[key],),
        )
        return [{key: params[key]}] if deleted else []

    def _op_clear(self, adapter, conn, schema, params):
        d = adapter.dialect
        scope = schema.scope_column
        if scope:
            if not params.get(scope):
                return [{"deleted": 0}]
            deleted = adapter.run(
                conn,
                f"DELETE FROM {d.quote(schema.name)} WHERE {d.quote(scope)} = {d.placeholder(0)}",
                (params[scope],),
            )
        else:
            deleted = adapter.run(conn, f"DELETE FROM {d.quote(schema.name)}")
        return [{"deleted": deleted}]

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _check_columns(schema: TableSchema, params: Mapping[str, Any]) -> None:
        unknown = sorted(set(params) - set(schema.column_names))
        if unknown:
            raise ValidationError(
                f"Unknown column(s) for {schema.name}: {', '.join(unknown)}"
            ).with_context(table=schema.name)


def _is_interrupt(error: BaseException) -> bool:
    if MySQLAdapter.is_statement_timeout(error):
        return True
    return isinstance(error, sqlite3.OperationalError) and "interrupt" in str(error).lower()


__all__ = ["Operation", "StorageRouter"]
