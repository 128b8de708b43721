"""
panelstore - Data layer for the administrative panel.

Forward-only SQLite migrations, an embedded/external storage router and
the collaborators (CLI, HTTP) built on top of them.
"""

__version__ = "0.1.0"

from panelstore.core import *  # noqa
