"""
Unfold Store - persistent hierarchical note store.
This package keeps spaces and their trees of notes in SQLite, evolves the
schema through a versioned migration ledger, and binds image attachments
on disk to metadata rows, exposed to the application as MCP tools.

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("unfold-store")
except PackageNotFoundError:
    __version__ = "0.3.0"
