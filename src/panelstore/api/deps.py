"""
FastAPI dependency injection: the storage service singleton.

Usage in routers::

    from panelstore.api.deps import Storage

    @router.get("/things")
    def list_things(storage: Storage):
        ...
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from panelstore.core.storage import StorageService


def get_storage(request: Request) -> StorageService:
    """The service created and initialised by the app lifespan."""
    return request.app.state.storage


Storage = Annotated[StorageService, Depends(get_storage)]
