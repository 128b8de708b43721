"""Migration registry: the ordered, shipped migration steps.

Steps are immutable once released. Their ordinals are never reused or
reordered; a schema change is always a new step with a higher ordinal.
Column lists here are literal on purpose: they record what each release
created, while :mod:`panelstore.core.schema` describes the current shape.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any

from panelstore.core.errors import ConfigError
from panelstore.core.schema import ColumnSpec, col, pk

from .operations import (
    CreateIndex,
    CreateTable,
    EnsureColumn,
    Operation,
    RebuildTable,
    SeedRows,
)


@dataclass(frozen=True)
class MigrationStep:
    """One forward-only migration step."""

    ordinal: int
    description: str
    operations: tuple[Operation, ...]
    idempotent: bool = True


class MigrationRegistry:
    """Ordered collection of steps with unique positive ordinals."""

    def __init__(self, steps: Iterable[MigrationStep]):
        ordered = sorted(steps, key=lambda s: s.ordinal)
        seen: set[int] = set()
        for step in ordered:
            if step.ordinal < 1:
                raise ConfigError(f"Migration ordinal must be >= 1, got {step.ordinal}")
            if step.ordinal in seen:
                raise ConfigError(f"Duplicate migration ordinal {step.ordinal}")
            if not step.idempotent:
                raise ConfigError(f"Migration {step.ordinal} does not declare idempotence")
            seen.add(step.ordinal)
        self._steps = tuple(ordered)

    def __iter__(self) -> Iterator[MigrationStep]:
        return iter(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    @property
    def latest(self) -> int:
        return self._steps[-1].ordinal if self._steps else 0

    def pending(self, after: int) -> list[MigrationStep]:
        """Steps with an ordinal greater than ``after``, ascending."""
        return [s for s in self._steps if s.ordinal > after]


# ── Reference data ───────────────────────────────────────────────────────

DEFAULT_ROLES: tuple[dict[str, Any], ...] = (
    {"id": "role_admin", "name": "Administrator", "description": "Full access to the panel"},
    {"id": "role_employee", "name": "Employee", "description": "Day-to-day operations"},
)

DEFAULT_PERMISSIONS: tuple[dict[str, Any], ...] = (
    {"id": "perm_all", "name": "*:*", "description": "Everything"},
    {"id": "perm_dashboard_view", "name": "dashboard:view", "description": "View dashboard"},
    {"id": "perm_sales_manage", "name": "sales:manage", "description": "Record and view sales"},
    {"id": "perm_customers_manage", "name": "customers:manage", "description": "Manage customers"},
    {"id": "perm_inventory_manage", "name": "inventory:manage", "description": "Manage stock"},
)

DEFAULT_ROLE_PERMISSIONS: tuple[dict[str, Any], ...] = (
    {"id": "role_admin:perm_all", "role_id": "role_admin", "permission_id": "perm_all"},
    *(
        {
            "id": f"role_employee:{perm}",
            "role_id": "role_employee",
            "permission_id": perm,
        }
        for perm in (
            "perm_dashboard_view",
            "perm_sales_manage",
            "perm_customers_manage",
            "perm_inventory_manage",
        )
    ),
)


def _typed_inventory_row(row: dict[str, Any]) -> dict[str, Any]:
    quantity = row.get("quantity")
    price = row.get("price")
    return {
        **row,
        "quantity": 0 if quantity in (None, "") else int(quantity),
        "price": None if price in (None, "") else float(price),
    }


def _key_value(name: str) -> CreateTable:
    return CreateTable(name, (pk("key"), col("value")))


STEPS = MigrationRegistry(
    [
        MigrationStep(
            1,
            "Core panel tables",
            (
                CreateTable(
                    "routers",
                    (
                        pk(),
                        col("name", nullable=False),
                        col("host", nullable=False),
                        col("user", nullable=False),
                        col("password"),
                        col("port", "INTEGER", nullable=False),
                    ),
                ),
                _key_value("panel_settings"),
                _key_value("company_settings"),
                CreateTable(
                    "billing_plans",
                    (
                        pk(),
                        col("name"),
                        col("price", "REAL"),
                        col("cycle"),
                        col("pppoeProfile"),
                        col("description"),
                    ),
                ),
                CreateTable(
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
                    ),
                ),
                CreateTable(
                    "customers",
                    (
                        pk(),
                        col("username", nullable=False),
                        col("routerId", nullable=False),
                        col("fullName"),
                        col("address"),
                        col("contactNumber"),
                        col("email"),
                    ),
                ),
                CreateTable(
                    "inventory",
                    (
                        pk(),
                        col("name"),
                        col("quantity", "INTEGER"),
                        col("price", "REAL"),
                        col("serialNumber"),
                        col("dateAdded"),
                    ),
                ),
            ),
        ),
        MigrationStep(
            2,
            "Expenses",
            (
                CreateTable(
                    "expenses",
                    (
                        pk(),
                        col("date", nullable=False),
                        col("category", nullable=False),
                        col("description"),
                        col("amount", "REAL", nullable=False),
                    ),
                ),
            ),
        ),
        MigrationStep(
            3,
            "Panel users",
            (
                CreateTable(
                    "users",
                    (
                        pk(),
                        col("username", nullable=False, unique=True),
                        col("password", nullable=False),
                    ),
                ),
            ),
        ),
        MigrationStep(
            4,
            "Roles and permissions",
            (
                CreateTable("roles", (pk(), col("name", nullable=False), col("description"))),
                CreateTable(
                    "permissions", (pk(), col("name", nullable=False), col("description"))
                ),
                CreateTable(
                    "role_permissions",
                    (
                        pk(),
                        col("role_id", nullable=False),
                        col("permission_id", nullable=False),
                    ),
                ),
                EnsureColumn("users", ColumnSpec("role_id")),
                SeedRows("roles", DEFAULT_ROLES),
                SeedRows("permissions", DEFAULT_PERMISSIONS),
                SeedRows("role_permissions", DEFAULT_ROLE_PERMISSIONS),
            ),
        ),
        MigrationStep(
            5,
            "License",
            (
                CreateTable(
                    "license",
                    (pk(), col("license_key"), col("device_id"), col("expires_at")),
                ),
            ),
        ),
        MigrationStep(
            6,
            "Payroll",
            (
                CreateTable(
                    "employees",
                    (
                        pk(),
                        col("fullName", nullable=False),
                        col("role"),
                        col("hireDate"),
                        col("salaryType"),
                        col("rate", "REAL"),
                    ),
                ),
                CreateTable(
                    "employee_benefits",
                    (
                        pk(),
                        col("employeeId", nullable=False),
                        col("sss", "INTEGER", default="0"),
                        col("philhealth", "INTEGER", default="0"),
                        col("pagibig", "INTEGER", default="0"),
                    ),
                ),
                CreateTable(
                    "time_records",
                    (
                        pk(),
                        col("employeeId", nullable=False),
                        col("date", nullable=False),
                        col("timeIn"),
                        col("timeOut"),
                    ),
                ),
            ),
        ),
        MigrationStep(
            7,
            "Voucher and DHCP plans, DHCP clients, notifications",
            (
                CreateTable(
                    "voucher_plans",
                    (
                        pk(),
                        col("routerId", nullable=False),
                        col("name", nullable=False),
                        col("duration_minutes", "INTEGER"),
                        col("price", "REAL"),
                        col("currency"),
                        col("mikrotik_profile_name"),
                    ),
                ),
                CreateTable(
                    "dhcp_billing_plans",
                    (
                        pk(),
                        col("routerId", nullable=False),
                        col("name", nullable=False),
                        col("price", "REAL"),
                        col("cycle_days", "INTEGER"),
                        col("speedLimit"),
                        col("currency"),
                    ),
                ),
                CreateTable(
                    "dhcp_clients",
                    (
                        pk(),
                        col("routerId", nullable=False),
                        col("macAddress", nullable=False),
                        col("customerInfo"),
                        col("contactNumber"),
                        col("email"),
                        col("speedLimit"),
                        col("lastSeen"),
                    ),
                ),
                CreateTable(
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
                ),
            ),
        ),
        MigrationStep(
            8,
            "Scope billing plans and sales by router",
            (
                EnsureColumn("billing_plans", ColumnSpec("currency")),
                EnsureColumn("billing_plans", ColumnSpec("routerId")),
                EnsureColumn("sales_records", ColumnSpec("currency")),
                EnsureColumn("sales_records", ColumnSpec("clientAddress")),
                EnsureColumn("sales_records", ColumnSpec("clientContact")),
                EnsureColumn("sales_records", ColumnSpec("clientEmail")),
                EnsureColumn("sales_records", ColumnSpec("routerId")),
                *(
                    CreateIndex(f"idx_{table}_router", table, ("routerId",))
                    for table in (
                        "billing_plans",
                        "sales_records",
                        "customers",
                        "voucher_plans",
                        "dhcp_billing_plans",
                        "dhcp_clients",
                    )
                ),
            ),
        ),
        MigrationStep(
            9,
            "Typed inventory quantities",
            (
                RebuildTable(
                    "inventory",
                    (
                        pk(),
                        col("name"),
                        col("quantity", "INTEGER", nullable=False, default="0"),
                        col("price", "REAL"),
                        col("serialNumber"),
                        col("dateAdded"),
                    ),
                    convert=_typed_inventory_row,
                ),
            ),
        ),
    ]
)


__all__ = [
    "MigrationStep",
    "MigrationRegistry",
    "STEPS",
    "DEFAULT_ROLES",
    "DEFAULT_PERMISSIONS",
    "DEFAULT_ROLE_PERMISSIONS",
]
