"""Storage layer for the Unfold note store."""

from unfold_store.storage.attachment_store import AttachmentStore
from unfold_store.storage.schema_doctor import SchemaDoctor
from unfold_store.storage.tree_repository import TreeRepository

__all__ = [
    "TreeRepository",
    "AttachmentStore",
    "SchemaDoctor",
]
