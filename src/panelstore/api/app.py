"""
FastAPI application factory.

``create_app()`` wires middleware, routes, error handlers and the
lifespan that boots storage into a single ``FastAPI`` instance.

Manifesto:
    The app factory is the single composition root. Storage is
    initialised in the lifespan, before the first request: a migration
    failure aborts startup instead of serving traffic on a half-migrated
    schema.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from panelstore import __version__
from panelstore.api.errors import storage_exception_handler, unhandled_exception_handler
from panelstore.api.middleware import RequestIDMiddleware
from panelstore.core.errors import PanelStoreError
from panelstore.core.logging import configure_logging, get_logger
from panelstore.core.settings import StorageSettings, get_settings
from panelstore.core.storage import StorageService

log = get_logger("panelstore.api")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Configure logging and boot storage on startup, close it on shutdown."""
    settings: StorageSettings = app.state.settings
    configure_logging(level=settings.log_level, json_format=settings.json_logs)
    storage: StorageService = app.state.storage
    log.info("api.starting", version=app.version)
    report = storage.initialize_storage()
    log.info("api.storage_ready", **report.to_dict())
    try:
        yield
    finally:
        storage.close()
        log.info("api.shutdown")


def create_app(
    *,
    settings: StorageSettings | None = None,
    storage: StorageService | None = None,
) -> FastAPI:
    """Build and return a fully-configured FastAPI application.

    Parameters
    ----------
    settings : StorageSettings | None
        Override settings (useful for testing). When ``None`` the cached
        singleton from :func:`get_settings` is used.
    storage : StorageService | None
        Pre-built service, e.g. with a test adapter factory.
    """
    settings = settings or (storage.settings if storage else get_settings())

    app = FastAPI(
        title=settings.api_title,
        version=__version__,
        lifespan=lifespan,
        docs_url=f"{settings.api_prefix}/docs",
        openapi_url=f"{settings.api_prefix}/openapi.json",
    )

    app.state.settings = settings
    app.state.storage = storage or StorageService(settings)

    # ── Middleware ───────────────────────────────────────────────────
    app.add_middleware(RequestIDMiddleware)

    # ── Exception handlers ───────────────────────────────────────────
    app.add_exception_handler(PanelStoreError, storage_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # ── Routes ───────────────────────────────────────────────────────
    from panelstore.api.routes import router

    app.include_router(router, prefix=settings.api_prefix, tags=["storage"])

    @app.get("/health", tags=["health"])
    def health() -> dict[str, object]:
        storage_ready = app.state.storage.ready
        return {"status": "ok" if storage_ready else "starting", "ready": storage_ready}

    return app
