"""
CLI layer for panelstore.

Provides a Typer application whose sub-commands delegate to
:class:`~panelstore.core.storage.StorageService`. This package handles only
terminal transport: argument parsing, coloured output and tables.

Entry point::

    panelstore --help
"""

from panelstore.cli.app import app

__all__ = ["app"]
