"""
Tests for the migration registry and runner.

Covers ordering, idempotent replay, compare-and-set conflicts, failure
halting and the non-transactional DDL path.
"""

from __future__ import annotations

import pytest
from structlog.testing import capture_logs

from panelstore.core.errors import ConfigError, MigrationFailure
from panelstore.core.migrations import (
    STEPS,
    MigrationRegistry,
    MigrationRunner,
    MigrationStep,
    RunnerState,
)
from panelstore.core.migrations.operations import CreateTable
from panelstore.core.migrations.steps import DEFAULT_PERMISSIONS, DEFAULT_ROLES
from panelstore.core.schema import TABLES, col, pk

# ── Fixtures ─────────────────────────────────────────────────────────────


class Flaky:
    """Operation that fails ``failures`` times, then succeeds."""

    def __init__(self, failures: int = 1):
        self.failures = failures
        self.calls = 0

    def apply(self, adapter, conn) -> None:
        self.calls += 1
        if self.failures:
            self.failures -= 1
            raise RuntimeError("disk I/O error")

    def describe(self) -> str:
        return "flaky"


def _schema(adapter) -> list[dict]:
    return adapter.query(
        "SELECT type, name, tbl_name, sql FROM sqlite_master "
        "WHERE name NOT LIKE 'sqlite_%' ORDER BY name"
    )


def _count(adapter, table: str) -> int:
    return adapter.query(f'SELECT COUNT(*) AS c FROM "{table}"')[0]["c"]


# ── Registry ─────────────────────────────────────────────────────────────


class TestMigrationRegistry:
    def test_shipped_steps_are_ordered_and_dense(self):
        assert [s.ordinal for s in STEPS] == list(range(1, STEPS.latest + 1))

    def test_sorted_on_construction(self):
        reg = MigrationRegistry(
            [MigrationStep(2, "b", ()), MigrationStep(1, "a", ())]
        )
        assert [s.ordinal for s in reg] == [1, 2]

    def test_duplicate_ordinal_rejected(self):
        with pytest.raises(ConfigError, match="Duplicate"):
            MigrationRegistry([MigrationStep(1, "a", ()), MigrationStep(1, "b", ())])

    def test_ordinal_must_be_positive(self):
        with pytest.raises(ConfigError):
            MigrationRegistry([MigrationStep(0, "zero", ())])

    def test_non_idempotent_step_rejected(self):
        with pytest.raises(ConfigError, match="idempotence"):
            MigrationRegistry([MigrationStep(1, "a", (), idempotent=False)])

    def test_pending(self):
        assert [s.ordinal for s in STEPS.pending(7)] == [8, 9]
        assert STEPS.pending(STEPS.latest) == []


# ── Runner: fresh and repeated boots ─────────────────────────────────────


class TestMigrationRunner:
    def test_empty_store_reaches_latest(self, embedded):
        result = MigrationRunner(embedded).apply_pending()
        assert result.success
        assert result.from_version == 0
        assert result.to_version == STEPS.latest
        assert result.applied == list(range(1, STEPS.latest + 1))

    def test_every_registered_table_exists(self, migrated):
        with migrated.transaction() as conn:
            for table in TABLES:
                assert sorted(migrated.table_columns(conn, table.name)) == sorted(
                    table.column_names
                ), table.name

    def test_second_run_applies_nothing(self, migrated):
        result = MigrationRunner(migrated).apply_pending()
        assert result.success
        assert result.applied == []
        assert result.from_version == result.to_version == STEPS.latest

    def test_reference_data_seeded_once(self, migrated):
        MigrationRunner(migrated).apply_pending()
        assert _count(migrated, "roles") == len(DEFAULT_ROLES)
        assert _count(migrated, "permissions") == len(DEFAULT_PERMISSIONS)

    def test_replaying_every_step_leaves_identical_schema(self, migrated):
        before = _schema(migrated)
        migrated.execute("UPDATE schema_version SET version = 0")

        result = MigrationRunner(migrated).apply_pending()

        assert result.applied == list(range(1, STEPS.latest + 1))
        assert _schema(migrated) == before
        assert _count(migrated, "roles") == len(DEFAULT_ROLES)

    def test_replay_keeps_business_rows(self, migrated):
        migrated.execute(
            "INSERT INTO inventory (id, name, quantity, price) VALUES ('i1', 'Router', 3, 99.5)"
        )
        migrated.execute("UPDATE schema_version SET version = 0")
        MigrationRunner(migrated).apply_pending()
        assert migrated.query("SELECT id, quantity FROM inventory") == [
            {"id": "i1", "quantity": 3}
        ]

    def test_status_and_pending(self, embedded):
        runner = MigrationRunner(embedded)
        status = runner.status()
        assert status["version"] == 0
        assert status["latest"] == STEPS.latest
        assert status["pending"] == list(range(1, STEPS.latest + 1))
        assert status["state"] == "idle"

        runner.apply_pending()
        assert runner.get_pending() == []
        assert runner.current_version() == STEPS.latest

    def test_logs_each_step(self, embedded):
        with capture_logs() as logs:
            MigrationRunner(embedded).apply_pending()
        applied = [e["step"] for e in logs if e["event"] == "migration.applied"]
        assert applied == list(range(1, STEPS.latest + 1))


# ── Runner: partial history ──────────────────────────────────────────────


class TestPartialHistory:
    def test_resumes_from_ledger(self, embedded):
        first = MigrationRegistry(list(STEPS)[:3])
        assert MigrationRunner(embedded, first).apply_pending().to_version == 3

        result = MigrationRunner(embedded).apply_pending()
        assert result.from_version == 3
        assert result.applied == list(range(4, STEPS.latest + 1))

    def test_ledger_never_moves_backwards(self, migrated):
        old_release = MigrationRegistry(list(STEPS)[:2])
        result = MigrationRunner(migrated, old_release).apply_pending()
        assert result.applied == []
        assert MigrationRunner(migrated).current_version() == STEPS.latest

    def test_ledger_moved_by_concurrent_runner(self, embedded, monkeypatch):
        MigrationRunner(embedded, MigrationRegistry(list(STEPS)[:5])).apply_pending()

        runner = MigrationRunner(embedded)
        real_read = runner.ledger.read
        reads = []

        def stale_first_read(conn=None):
            reads.append(conn)
            if len(reads) == 1:
                return 0  # scanned before the other runner finished
            return real_read(conn)

        monkeypatch.setattr(runner.ledger, "read", stale_first_read)
        with capture_logs() as logs:
            result = runner.apply_pending()

        assert result.success
        assert result.applied == list(range(6, STEPS.latest + 1))
        assert result.to_version == STEPS.latest
        assert any(e["event"] == "migration.ledger_moved" for e in logs)


# ── Runner: failures ─────────────────────────────────────────────────────


class TestFailure:
    def _registry(self, flaky: Flaky) -> MigrationRegistry:
        return MigrationRegistry(
            [
                MigrationStep(1, "one", (CreateTable("t1", (pk(), col("a"))),)),
                MigrationStep(2, "two", (CreateTable("t2", (pk(),)), flaky)),
                MigrationStep(3, "three", (CreateTable("t3", (pk(),)),)),
            ]
        )

    def test_failing_step_halts_and_rolls_back(self, embedded):
        runner = MigrationRunner(embedded, self._registry(Flaky()))
        result = runner.apply_pending()

        assert not result.success
        assert result.failed == 2
        assert result.applied == [1]
        assert result.to_version == 1
        assert "disk I/O error" in result.error
        assert runner.state is RunnerState.FAILED
        assert runner.current_version() == 1
        with embedded.transaction() as conn:
            assert embedded.table_exists(conn, "t1")
            assert not embedded.table_exists(conn, "t2")
            assert not embedded.table_exists(conn, "t3")

    def test_raise_on_failure(self, embedded):
        result = MigrationRunner(embedded, self._registry(Flaky())).apply_pending()
        with pytest.raises(MigrationFailure) as exc:
            result.raise_on_failure()
        assert exc.value.ordinal == 2
        assert isinstance(exc.value.cause, RuntimeError)

    def test_rerun_after_fix_completes(self, embedded):
        flaky = Flaky()
        registry = self._registry(flaky)
        MigrationRunner(embedded, registry).apply_pending()

        result = MigrationRunner(embedded, registry).apply_pending()
        assert result.success
        assert result.applied == [2, 3]

    def test_non_transactional_engine(self, embedded):
        embedded.supports_transactional_ddl = False
        flaky = Flaky()
        registry = self._registry(flaky)

        result = MigrationRunner(embedded, registry).apply_pending()
        assert result.failed == 2
        # Operations before the failure were committed one by one
        with embedded.transaction() as conn:
            assert embedded.table_exists(conn, "t2")
        assert MigrationRunner(embedded, registry).current_version() == 1

        # Idempotent replay of the partially applied step
        result = MigrationRunner(embedded, registry).apply_pending()
        assert result.success
        assert result.applied == [2, 3]
        assert flaky.calls == 2
