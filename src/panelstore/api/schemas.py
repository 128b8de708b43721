"""
API schemas: request bodies and the RFC 7807 error envelope.

Row payloads are plain JSON objects: their columns are validated against
the table registry by the storage router, not by per-table models.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class ProblemDetail(BaseModel):
    """RFC 7807 «Problem Details for HTTP APIs».

    Used as the error envelope for all non-2xx responses. ``detail`` never
    carries engine internals on CRUD routes.
    """

    type: str = Field(default="about:blank", description="URI identifying the problem type")
    title: str = Field(description="Short human-readable summary")
    status: int = Field(description="HTTP status code")
    detail: str = Field(default="", description="Human-readable explanation")
    instance: str = Field(default="", description="URI of the failing request")


class EngineConfigRequest(BaseModel):
    """Engine settings as the admin UI sends them."""

    databaseEngine: str = Field(default="sqlite", description="sqlite|mariadb (or embedded|external)")
    dbHost: str = ""
    dbPort: int = 3306
    dbUser: str = ""
    dbPassword: str = ""
    dbName: str = ""


class BulkMigrationRequest(BaseModel):
    """Tables to copy; empty or missing means every migratable table."""

    tables: list[str] | None = None


class TableCopyResponse(BaseModel):
    ok: bool
    rows: int = 0
    error: str | None = None
