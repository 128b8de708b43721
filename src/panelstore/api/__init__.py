"""
HTTP collaborator for panelstore.

A thin FastAPI layer over :class:`~panelstore.core.storage.StorageService`;
see :mod:`panelstore.api.routes` for the endpoints.
"""

from panelstore.api.app import create_app

__all__ = ["create_app"]
