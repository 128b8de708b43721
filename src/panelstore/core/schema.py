"""Closed table registry.

Every table the storage router may touch is described here by a typed
``TableSchema``: its columns, primary key, optional tenant-scoping column
and its classification. Nothing builds SQL from a table name that is not
in this registry.

Classification:
    - **critical**: identity, credentials, roles, permissions, license and
      low-level panel settings. Always served by the embedded engine.
    - **migratable**: business and operational data. May be served by the
      external engine when one is active.
    - **unclassified**: everything else. Embedded only.

Each descriptor carries exactly one classification, so the three sets are
disjoint by construction; :class:`TableRegistry` re-validates that at
import time.

Examples:
    >>> from panelstore.core.schema import TABLES
    >>> TABLES.resolve("sales").name
    'sales_records'
    >>> TABLES.resolve("sales").scope_column
    'routerId'
    >>> "users" in TABLES.critical
    True
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum

from panelstore.core.errors import ConfigError, UnknownTableError

TENANT_COLUMN = "routerId"


class Classification(str, Enum):
    CRITICAL = "critical"
    MIGRATABLE = "migratable"
    UNCLASSIFIED = "unclassified"


@dataclass(frozen=True)
class ColumnSpec:
    """One column of a table descriptor.

    ``type`` is an abstract storage type (``TEXT``, ``INTEGER``, ``REAL``);
    dialects map it to the concrete engine type.
    """

    name: str
    type: str = "TEXT"
    primary_key: bool = False
    nullable: bool = True
    unique: bool = False
    default: str | None = None


def col(name: str, type: str = "TEXT", **kwargs) -> ColumnSpec:
    return ColumnSpec(name, type, **kwargs)


def pk(name: str = "id", type: str = "TEXT") -> ColumnSpec:
    return ColumnSpec(name, type, primary_key=True, nullable=False)


@dataclass(frozen=True)
class TableSchema:
    """Typed descriptor of one table."""

    name: str
    columns: tuple[ColumnSpec, ...]
    classification: Classification = Classification.UNCLASSIFIED
    scope_column: str | None = None
    aliases: tuple[str, ...] = field(default=())

    def __post_init__(self) -> None:
        keys = [c for c in self.columns if c.primary_key]
        if len(keys) != 1:
            raise ConfigError(f"Table {self.name!r} must declare exactly one primary key")
        names = [c.name for c in self.columns]
        if len(set(names)) != len(names):
            raise ConfigError(f"Table {self.name!r} declares duplicate columns")
        if self.scope_column is not None and self.scope_column not in names:
            raise ConfigError(
                f"Table {self.name!r} scope column {self.scope_column!r} is not a column"
            )

    @property
    def primary_key(self) -> str:
        return next(c.name for c in self.columns if c.primary_key)

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    def column(self, name: str) -> ColumnSpec | None:
        for c in self.columns:
            if c.name == name:
                return c
        return None

    @property
    def is_critical(self) -> bool:
        return self.classification is Classification.CRITICAL

    @property
    def is_migratable(self) -> bool:
        return self.classification is Classification.MIGRATABLE


class TableRegistry:
    """Closed mapping of table name (and alias) to descriptor."""

    def __init__(self, tables: Iterable[TableSchema]):
        self._tables: dict[str, TableSchema] = {}
        self._aliases: dict[str, str] = {}
        for table in tables:
            if table.name in self._tables:
                raise ConfigError(f"Table {table.name!r} registered twice")
            self._tables[table.name] = table
            for alias in table.aliases:
                self._aliases[alias] = table.name

        self.critical = frozenset(
            t.name for t in self._tables.values() if t.is_critical
        )
        self.migratable = frozenset(
            t.name for t in self._tables.values() if t.is_migratable
        )
        self.unclassified = frozenset(self._tables) - self.critical - self.migratable
        if self.critical & self.migratable:
            raise ConfigError(
                f"Tables classified both critical and migratable: "
                f"{sorted(self.critical & self.migratable)}"
            )

    def resolve(self, name: str) -> TableSchema:
        """Return the descriptor for a table name or alias."""
        canonical = self._aliases.get(name, name)
        try:
            return self._tables[canonical]
        except KeyError:
            raise UnknownTableError(name) from None

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and (name in self._tables or name in self._aliases)

    def __iter__(self) -> Iterator[TableSchema]:
        return iter(self._tables.values())

    def names(self) -> list[str]:
        return list(self._tables)


CRITICAL = Classification.CRITICAL
MIGRATABLE = Classification.MIGRATABLE
UNCLASSIFIED = Classification.UNCLASSIFIED


TABLES = TableRegistry(
    [
        # ── Identity and security (critical) ─────────────────────────
        TableSchema(
            "users",
            (
                pk(),
                col("username", nullable=False, unique=True),
                col("password", nullable=False),
                col("role_id"),
            ),
            CRITICAL,
        ),
        TableSchema("roles", (pk(), col("name", nullable=False), col("description")), CRITICAL),
        TableSchema(
            "permissions", (pk(), col("name", nullable=False), col("description")), CRITICAL
        ),
        TableSchema(
            "role_permissions",
            (pk(), col("role_id", nullable=False), col("permission_id", nullable=False)),
            CRITICAL,
        ),
        TableSchema(
            "license",
            (pk(), col("license_key"), col("device_id"), col("expires_at")),
            CRITICAL,
        ),
        TableSchema(
            "panel_settings",
            (pk("key"), col("value")),
            CRITICAL,
            aliases=("panel-settings",),
        ),
        # ── Embedded-only configuration (unclassified) ───────────────
        TableSchema(
            "company_settings",
            (pk("key"), col("value")),
            UNCLASSIFIED,
            aliases=("company-settings",),
        ),
        TableSchema(
            "routers",
            (
                pk(),
                col("name", nullable=False),
                col("host", nullable=False),
                col("user", nullable=False),
                col("password"),
                col("port", "INTEGER", nullable=False),
            ),
            UNCLASSIFIED,
        ),
        # ── Business data (migratable, tenant-scoped) ────────────────
        TableSchema(
            "billing_plans",
            (
                pk(),
                col("name"),
                col("price", "REAL"),
                col("cycle"),
                col("pppoeProfile"),
                col("description"),
                col("currency"),
                col(TENANT_COLUMN),
            ),
            MIGRATABLE,
            scope_column=TENANT_COLUMN,
            aliases=("billing-plans",),
        ),
        TableSchema(
            "sales_records",
            (
                pk(),
                col("date"),
                col("clientName"),
                col("planName"),
                col("planPrice", "REAL"),
                col("discountAmount", "REAL"),
                col("finalAmount", "REAL"),
                col("routerName"),
                col("currency"),
                col("clientAddress"),
                col("clientContact"),
                col("clientEmail"),
                col(TENANT_COLUMN),
            ),
            MIGRATABLE,
            scope_column=TENANT_COLUMN,
            aliases=("sales",),
        ),
        TableSchema(
            "customers",
            (
                pk(),
                col("username", nullable=False),
                col(TENANT_COLUMN, nullable=False),
                col("fullName"),
                col("address"),
                col("contactNumber"),
                col("email"),
            ),
            MIGRATABLE,
            scope_column=TENANT_COLUMN,
        ),
        TableSchema(
            "voucher_plans",
            (
                pk(),
                col(TENANT_COLUMN, nullable=False),
                col("name", nullable=False),
                col("duration_minutes", "INTEGER"),
                col("price", "REAL"),
                col("currency"),
                col("mikrotik_profile_name"),
            ),
            MIGRATABLE,
            scope_column=TENANT_COLUMN,
            aliases=("voucher-plans",),
        ),
        TableSchema(
            "dhcp_billing_plans",
            (
                pk(),
                col(TENANT_COLUMN, nullable=False),
                col("name", nullable=False),
                col("price", "REAL"),
                col("cycle_days", "INTEGER"),
                col("speedLimit"),
                col("currency"),
            ),
            MIGRATABLE,
            scope_column=TENANT_COLUMN,
            aliases=("dhcp-billing-plans",),
        ),
        TableSchema(
            "dhcp_clients",
            (
                pk(),
                col(TENANT_COLUMN, nullable=False),
                col("macAddress", nullable=False),
                col("customerInfo"),
                col("contactNumber"),
                col("email"),
                col("speedLimit"),
                col("lastSeen"),
            ),
            MIGRATABLE,
            scope_column=TENANT_COLUMN,
            aliases=("dhcp-clients",),
        ),
        # ── Business data (migratable, global) ───────────────────────
        TableSchema(
            "inventory",
            (
                pk(),
                col("name"),
                col("quantity", "INTEGER", nullable=False, default="0"),
                col("price", "REAL"),
                col("serialNumber"),
                col("dateAdded"),
            ),
            MIGRATABLE,
        ),
        TableSchema(
            "expenses",
            (
                pk(),
                col("date", nullable=False),
                col("category", nullable=False),
                col("description"),
                col("amount", "REAL", nullable=False),
            ),
            MIGRATABLE,
        ),
        TableSchema(
            "employees",
            (
                pk(),
                col("fullName", nullable=False),
                col("role"),
                col("hireDate"),
                col("salaryType"),
                col("rate", "REAL"),
            ),
            MIGRATABLE,
        ),
        TableSchema(
            "employee_benefits",
            (
                pk(),
                col("employeeId", nullable=False),
                col("sss", "INTEGER", default="0"),
                col("philhealth", "INTEGER", default="0"),
                col("pagibig", "INTEGER", default="0"),
            ),
            MIGRATABLE,
            aliases=("employee-benefits",),
        ),
        TableSchema(
            "time_records",
            (
                pk(),
                col("employeeId", nullable=False),
                col("date", nullable=False),
                col("timeIn"),
                col("timeOut"),
            ),
            MIGRATABLE,
            aliases=("time-records",),
        ),
        TableSchema(
            "notifications",
            (
                pk(),
                col("type", nullable=False),
                col("message", nullable=False),
                col("is_read", "INTEGER", default="0"),
                col("timestamp", nullable=False),
                col("link_to"),
                col("context_json"),
            ),
            MIGRATABLE,
        ),
    ]
)


__all__ = [
    "TENANT_COLUMN",
    "Classification",
    "ColumnSpec",
    "TableSchema",
    "TableRegistry",
    "TABLES",
    "col",
    "pk",
]
