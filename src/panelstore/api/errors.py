"""
Error handlers: map storage errors to RFC 7807 responses.

End users of the CRUD routes see a generic failure; the cause is logged,
never returned. Engine administration routes may say *why* the external
engine is unavailable, because that is what administrators act on.
"""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse

from panelstore.api.schemas import ProblemDetail
from panelstore.core.errors import (
    BackupError,
    BackupNotFound,
    ConfigError,
    CriticalTableViolation,
    EngineUnreachable,
    PanelStoreError,
    StorageError,
    StorageNotReady,
    StorageTimeoutError,
    UnknownTableError,
    ValidationError,
)
from panelstore.core.logging import get_logger

logger = get_logger(__name__)


class RowNotFound(StorageError):
    """No row with the requested id."""


# Most specific first
_STATUS: list[tuple[type[PanelStoreError], int, str]] = [
    (UnknownTableError, 404, "Not Found"),
    (RowNotFound, 404, "Not Found"),
    (BackupNotFound, 404, "Not Found"),
    (ValidationError, 400, "Bad Request"),
    (ConfigError, 400, "Invalid Configuration"),
    (CriticalTableViolation, 403, "Forbidden"),
    (StorageNotReady, 503, "Service Unavailable"),
    (StorageTimeoutError, 504, "Gateway Timeout"),
    (EngineUnreachable, 503, "Engine Unavailable"),
    (StorageError, 500, "Storage Error"),
    (BackupError, 500, "Backup Failed"),
]

# Messages of these errors are safe to show to end users.
_PUBLIC_DETAIL = (ValidationError, ConfigError, EngineUnreachable, RowNotFound, BackupNotFound)


def status_for_error(exc: PanelStoreError) -> tuple[int, str]:
    """Resolve an error to (HTTP status, title), defaulting to 500."""
    for error_type, status, title in _STATUS:
        if isinstance(exc, error_type):
            return status, title
    return 500, "Internal Server Error"


def problem_response(
    *,
    status: int,
    title: str,
    detail: str = "",
    instance: str = "",
) -> JSONResponse:
    """Build a RFC 7807 JSON error response."""
    body = ProblemDetail(title=title, status=status, detail=detail, instance=instance)
    return JSONResponse(
        status_code=status,
        content=body.model_dump(),
        media_type="application/problem+json",
    )


async def storage_exception_handler(request: Request, exc: PanelStoreError) -> JSONResponse:
    """Map a :class:`PanelStoreError` to its problem response."""
    status, title = status_for_error(exc)
    log = logger.warning if status < 500 else logger.error
    log("api.request_failed", path=request.url.path, status=status, **exc.to_dict())
    if isinstance(exc, _PUBLIC_DETAIL) or request.app.state.settings.debug:
        detail = exc.message
    else:
        detail = "The storage operation could not be completed."
    return problem_response(status=status, title=title, detail=detail, instance=str(request.url))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions; returns 500 with ProblemDetail."""
    logger.error("api.unhandled_error", path=request.url.path, error=str(exc))
    return problem_response(
        status=500,
        title="Internal Server Error",
        detail=str(exc) if request.app.state.settings.debug else "An unexpected error occurred.",
        instance=str(request.url),
    )
