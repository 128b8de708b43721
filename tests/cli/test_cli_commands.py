"""Tests for the panelstore CLI via Typer's CliRunner."""

from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from panelstore.cli.app import app
from panelstore.core.migrations import STEPS

runner = CliRunner()


@pytest.fixture
def database(tmp_path):
    return str(tmp_path / "panel.db")


def _invoke(*args: str):
    return runner.invoke(app, ["--log-level", "CRITICAL", *args])


# ── Root ─────────────────────────────────────────────────────────────────


class TestRoot:
    def test_version(self):
        result = _invoke("--version")
        assert result.exit_code == 0
        assert result.output.startswith("panelstore ")

    def test_help_lists_groups(self):
        result = _invoke("--help")
        assert result.exit_code == 0
        for group in ("db", "engine", "serve"):
            assert group in result.output


# ── db ───────────────────────────────────────────────────────────────────


class TestDb:
    def test_status_on_fresh_file(self, database):
        result = _invoke("db", "status", "--database", database, "--json")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["version"] == 0
        assert data["pending"] == list(range(1, STEPS.latest + 1))

    def test_init(self, database):
        result = _invoke("db", "init", "--database", database, "--json")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["version"] == STEPS.latest
        assert data["engine"] == "embedded"

    def test_pending_after_init(self, database):
        _invoke("db", "init", "--database", database)
        result = _invoke("db", "pending", "--database", database)
        assert result.exit_code == 0
        assert "up to date" in result.output

    def test_pending_lists_steps(self, database):
        result = _invoke("db", "pending", "--database", database, "--json")
        assert result.exit_code == 0
        steps = json.loads(result.stdout)
        assert [s["ordinal"] for s in steps] == list(range(1, STEPS.latest + 1))

    def test_repair(self, database):
        _invoke("db", "init", "--database", database)
        result = _invoke("db", "repair", "--database", database, "--json")
        assert result.exit_code == 0
        reports = json.loads(result.stdout)
        assert all(not r["drifted"] for r in reports)


# ── engine ───────────────────────────────────────────────────────────────


class TestDbBackup:
    def test_create_list_status(self, database):
        created = _invoke("db", "backup", "create", "--database", database, "--json")
        assert created.exit_code == 0
        name = json.loads(created.stdout)["name"]

        listed = _invoke("db", "backup", "list", "--database", database, "--json")
        assert [b["name"] for b in json.loads(listed.stdout)] == [name]

        status = _invoke("db", "backup", "status", "--database", database, "--json")
        assert json.loads(status.stdout)["latest"]["name"] == name

    def test_restore_and_delete(self, database):
        name = json.loads(
            _invoke("db", "backup", "create", "--database", database, "--json").stdout
        )["name"]

        restored = _invoke("db", "backup", "restore", name, "--database", database, "--yes", "--json")
        assert restored.exit_code == 0
        assert json.loads(restored.stdout)["restored"] == name

        deleted = _invoke("db", "backup", "delete", name, "--database", database, "--yes")
        assert deleted.exit_code == 0
        listed = _invoke("db", "backup", "list", "--database", database, "--json")
        assert name not in [b["name"] for b in json.loads(listed.stdout)]

    def test_delete_asks_for_confirmation(self, database):
        name = json.loads(
            _invoke("db", "backup", "create", "--database", database, "--json").stdout
        )["name"]
        result = runner.invoke(
            app,
            ["--log-level", "CRITICAL", "db", "backup", "delete", name, "--database", database],
            input="n\n",
        )
        assert result.exit_code == 1
        listed = _invoke("db", "backup", "list", "--database", database, "--json")
        assert [b["name"] for b in json.loads(listed.stdout)] == [name]

    def test_missing_backup_fails(self, database):
        result = _invoke(
            "db", "backup", "delete", "panel-19700101-000000-000000.sqlite",
            "--database", database, "--yes",
        )
        assert result.exit_code == 1


class TestEngine:
    def test_status(self, database):
        result = _invoke("engine", "status", "--database", database)
        assert result.exit_code == 0
        assert "embedded" in result.output

    def test_set_embedded(self, database):
        result = _invoke("engine", "set", "sqlite", "--database", database, "--json")
        assert result.exit_code == 0
        assert json.loads(result.stdout)["engine"] == "embedded"

    def test_set_external_without_host_fails(self, database):
        result = _invoke("engine", "set", "external", "--database", database)
        assert result.exit_code == 1
        assert "Error" in result.output
        assert "dbHost" in result.output

    def test_set_unknown_engine_fails(self, database):
        result = _invoke("engine", "set", "postgres", "--database", database)
        assert result.exit_code == 1

    def test_set_unreachable_external_falls_back(self, database):
        result = _invoke(
            "engine", "set", "external",
            "--host", "127.0.0.1", "--port", "1",
            "--user", "u", "--db-name", "d",
            "--database", database,
        )
        assert result.exit_code == 1
        assert "unreachable" in result.output

        status = _invoke("engine", "status", "--database", database, "--json")
        data = json.loads(status.stdout)
        assert data["engine"] == "embedded"
        assert data["external"]["configured"] is True

    def test_migrate_requires_external(self, database):
        result = _invoke("engine", "migrate", "--database", database)
        assert result.exit_code == 1
        assert "EngineUnreachable" in result.output
