"""
Tests for the FastAPI application: lifespan boot, table routes, engine
administration, backups and RFC 7807 error mapping.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from panelstore.api import create_app
from panelstore.core.errors import StorageError
from panelstore.core.storage import StorageService

# ── Fixtures ─────────────────────────────────────────────────────────────


@pytest.fixture
def client(settings, external_factory):
    storage = StorageService(settings, adapter_factory=external_factory)
    with TestClient(create_app(storage=storage)) as c:
        yield c


@pytest.fixture
def offline_client(settings, unreachable_factory):
    storage = StorageService(settings, adapter_factory=unreachable_factory)
    with TestClient(create_app(storage=storage)) as c:
        yield c


EXTERNAL = {
    "databaseEngine": "mariadb",
    "dbHost": "db.local",
    "dbPort": 3306,
    "dbUser": "panel",
    "dbPassword": "s3cret",
    "dbName": "panel",
}


# ── App wiring ───────────────────────────────────────────────────────────


class TestApp:
    def test_health_after_boot(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "ready": True}

    def test_request_id_header(self, client):
        resp = client.get("/health", headers={"X-Request-ID": "req-1"})
        assert resp.headers["X-Request-ID"] == "req-1"

    def test_generated_request_id(self, client):
        assert client.get("/health").headers["X-Request-ID"]

    def test_openapi_under_prefix(self, client):
        assert client.get("/api/db/openapi.json").status_code == 200


# ── Table routes ─────────────────────────────────────────────────────────


class TestTableRoutes:
    def test_create_and_list_by_tenant(self, client):
        resp = client.post("/api/db/sales", json={"routerId": "r1", "clientName": "Ana"})
        assert resp.status_code == 201
        created = resp.json()
        assert created["id"]

        assert client.get("/api/db/sales").json() == []
        assert client.get("/api/db/sales", params={"routerId": "r1"}).json() == [created]
        assert client.get("/api/db/sales", params={"routerId": "r2"}).json() == []

    def test_get_update_delete(self, client):
        created = client.post("/api/db/inventory", json={"name": "Router", "quantity": 1}).json()
        row_id = created["id"]

        assert client.get(f"/api/db/inventory/{row_id}").json() == created

        resp = client.patch(f"/api/db/inventory/{row_id}", json={"quantity": 7})
        assert resp.status_code == 200
        assert resp.json()["quantity"] == 7

        assert client.delete(f"/api/db/inventory/{row_id}").json() == {"deleted": row_id}
        assert client.get(f"/api/db/inventory/{row_id}").status_code == 404

    def test_hyphenated_alias(self, client):
        resp = client.post("/api/db/voucher-plans", json={"routerId": "r1", "name": "1 hour"})
        assert resp.status_code == 201

    def test_clear_all_needs_router_id(self, client):
        client.post("/api/db/customers", json={"username": "ana", "routerId": "r1"})
        client.post("/api/db/customers", json={"username": "ben", "routerId": "r2"})

        assert client.post("/api/db/customers/clear-all").json() == {"deleted": 0}
        resp = client.post("/api/db/customers/clear-all", params={"routerId": "r1"})
        assert resp.json() == {"deleted": 1}
        assert len(client.get("/api/db/customers", params={"routerId": "r2"}).json()) == 1

    def test_missing_row_is_404(self, client):
        resp = client.patch("/api/db/inventory/nope", json={"quantity": 1})
        assert resp.status_code == 404
        assert resp.headers["content-type"].startswith("application/problem+json")

    def test_unknown_table_is_404(self, client):
        resp = client.get("/api/db/sqlite_master")
        assert resp.status_code == 404
        assert resp.json()["title"] == "Not Found"

    def test_unknown_column_is_400(self, client):
        resp = client.post("/api/db/sales", json={"routerId": "r1", "hack": "1"})
        assert resp.status_code == 400
        assert "hack" in resp.json()["detail"]

    def test_critical_tables_are_not_exposed(self, client):
        assert client.get("/api/db/users").status_code == 403
        assert client.post("/api/db/roles", json={"name": "root"}).status_code == 403

    def test_storage_error_detail_is_generic(self, client, monkeypatch):
        storage = client.app.state.storage

        def broken(*args, **kwargs):
            raise StorageError(
                "read on expenses failed",
                table="expenses",
                cause=RuntimeError("no such column: secret_internal"),
            )

        monkeypatch.setattr(storage.router, "dispatch", broken)
        resp = client.get("/api/db/expenses")
        assert resp.status_code == 500
        body = resp.json()
        assert body["title"] == "Storage Error"
        assert "secret_internal" not in body["detail"]
        assert body["detail"] == "The storage operation could not be completed."

    def test_constraint_violation_is_500(self, client):
        resp = client.post("/api/db/expenses", json={"date": "2024-05-01"})
        assert resp.status_code == 500


# ── Engine administration ────────────────────────────────────────────────


class TestEngineRoutes:
    def test_status(self, client):
        assert client.get("/api/db/engine").json() == {
            "engine": "embedded",
            "external": {"configured": False, "poolActive": False, "reachable": False},
            "error": None,
        }

    def test_switch_to_external(self, client):
        resp = client.put("/api/db/engine", json=EXTERNAL)
        assert resp.status_code == 200
        assert resp.json()["engine"] == "external"
        assert resp.json()["external"]["reachable"] is True

    def test_invalid_config_is_400(self, client):
        resp = client.put("/api/db/engine", json={**EXTERNAL, "dbHost": ""})
        assert resp.status_code == 400
        assert "dbHost" in resp.json()["detail"]

    def test_unreachable_engine_reports_fallback(self, offline_client):
        resp = offline_client.put("/api/db/engine", json=EXTERNAL)
        assert resp.status_code == 200
        body = resp.json()
        assert body["engine"] == "embedded"
        assert body["external"]["reachable"] is False
        assert body["error"]
        # CRUD keeps working on the embedded engine
        assert offline_client.post("/api/db/expenses", json={
            "date": "2024-05-01", "category": "Power", "amount": 10.0,
        }).status_code == 201

    def test_init_and_migrate(self, client):
        client.post("/api/db/expenses", json={"date": "2024-05-01", "category": "Power", "amount": 1.0})
        client.put("/api/db/engine", json=EXTERNAL)

        tables = client.post("/api/db/init-mariadb").json()["tables"]
        assert "expenses" in tables
        assert "users" not in tables

        resp = client.post("/api/db/migrate-sqlite-to-mariadb", json={"tables": ["expenses", "users"]})
        assert resp.status_code == 200
        body = resp.json()
        assert body["expenses"] == {"ok": True, "rows": 1, "error": None}
        assert body["users"]["ok"] is False

    def test_refused_external_column_add_is_generic_500(self, client, external_db):
        client.put("/api/db/engine", json=EXTERNAL)
        external_db.execute("DROP TABLE sales_records")
        external_db.execute('CREATE TABLE sales_base (id TEXT PRIMARY KEY, "routerId" TEXT)')
        external_db.execute("CREATE VIEW sales_records AS SELECT * FROM sales_base")

        resp = client.post("/api/db/sales", json={"routerId": "r1", "clientEmail": "a@b"})
        assert resp.status_code == 500
        body = resp.json()
        assert body["detail"] == "The storage operation could not be completed."
        assert "view" not in body["detail"].lower()

    def test_migrate_without_external_is_503(self, client):
        resp = client.post("/api/db/migrate-sqlite-to-mariadb")
        assert resp.status_code == 503


class TestPanelSettings:
    def test_save_and_read(self, client):
        resp = client.post("/api/db/panel-settings", json={"currency": "PHP", "vatRate": 12})
        assert resp.status_code == 200
        assert resp.json()["saved"] == ["currency", "vatRate"]

        values = client.get("/api/db/panel-settings").json()
        assert values["currency"] == "PHP"
        assert values["vatRate"] == "12"

    def test_engine_keys_apply_engine(self, client):
        resp = client.post("/api/db/panel-settings", json=EXTERNAL)
        assert resp.json()["engine"]["engine"] == "external"

        values = client.get("/api/db/panel-settings").json()
        assert values["dbPassword"] == "***"
        assert values["dbHost"] == "db.local"

    def test_masked_password_is_kept(self, client):
        client.post("/api/db/panel-settings", json=EXTERNAL)
        client.post("/api/db/panel-settings", json={"dbPassword": "***", "dbPort": 3306})
        storage = client.app.state.storage
        assert storage.load_engine_config().password == "s3cret"


class TestBackupRoutes:
    def test_create_list_status_delete(self, client):
        assert client.get("/api/db/backups").json() == []

        resp = client.post("/api/db/backups")
        assert resp.status_code == 201
        name = resp.json()["name"]

        assert [b["name"] for b in client.get("/api/db/backups").json()] == [name]
        status = client.get("/api/db/backups/status").json()
        assert status["count"] == 1
        assert status["latest"]["name"] == name

        assert client.delete(f"/api/db/backups/{name}").json() == {"deleted": name}
        assert client.get("/api/db/backups/status").json()["count"] == 0

    def test_download(self, client):
        name = client.post("/api/db/backups").json()["name"]
        resp = client.get(f"/api/db/backups/{name}")
        assert resp.status_code == 200
        assert resp.content.startswith(b"SQLite format 3\x00")

    def test_restore(self, client):
        client.post("/api/db/inventory", json={"name": "Router"})
        name = client.post("/api/db/backups").json()["name"]
        client.post("/api/db/inventory", json={"name": "Cable"})

        resp = client.post(f"/api/db/backups/{name}/restore")
        assert resp.status_code == 200
        assert resp.json()["restored"] == name
        assert [r["name"] for r in client.get("/api/db/inventory").json()] == ["Router"]

    def test_missing_backup_is_404(self, client):
        resp = client.delete("/api/db/backups/panel-19700101-000000-000000.sqlite")
        assert resp.status_code == 404
        assert "not found" in resp.json()["detail"]

    def test_invalid_name_is_400(self, client):
        assert client.post("/api/db/backups/panel.db/restore").status_code == 400

    def test_unreadable_backup_is_generic_500(self, client, settings):
        settings.backups_path.mkdir(parents=True, exist_ok=True)
        (settings.backups_path / "broken.sqlite").write_bytes(b"garbage" * 200)
        resp = client.post("/api/db/backups/broken.sqlite/restore")
        assert resp.status_code == 500
        assert resp.json()["title"] == "Backup Failed"
        assert resp.json()["detail"] == "The storage operation could not be completed."
