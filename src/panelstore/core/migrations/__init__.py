"""Forward-only schema migrations for the embedded engine.

Manifesto:
    The panel's SQLite file outlives many releases. Every schema change is
    an immutable, numbered, idempotent step; the version ledger records the
    highest step fully applied, so a restart after a crash simply resumes.

Modules
-------
ledger      VersionLedger: read-or-create, compare-and-set advance
operations  CreateTable / EnsureColumn / CreateIndex / SeedRows / RebuildTable
steps       MigrationStep, MigrationRegistry and the shipped STEPS
runner      MigrationRunner with apply_pending() / status()
repair      SchemaRepairProbe for drifted key/value settings tables
"""

from panelstore.core.migrations.ledger import LEDGER_TABLE, VersionLedger
from panelstore.core.migrations.repair import REPAIR_ALLOW_LIST, RepairReport, SchemaRepairProbe
from panelstore.core.migrations.runner import MigrationResult, MigrationRunner, RunnerState
from panelstore.core.migrations.steps import STEPS, MigrationRegistry, MigrationStep

__all__ = [
    "LEDGER_TABLE",
    "VersionLedger",
    "MigrationStep",
    "MigrationRegistry",
    "STEPS",
    "MigrationRunner",
    "MigrationResult",
    "RunnerState",
    "SchemaRepairProbe",
    "RepairReport",
    "REPAIR_ALLOW_LIST",
]
