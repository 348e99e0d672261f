"""Data models for the Unfold note store."""

import datetime
import uuid
from datetime import timezone
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_SPACE_ID = "default-space-mine"
DEFAULT_SPACE_NAME = "mine"

# Same shape SQLite produces with strftime('%Y-%m-%d %H:%M:%f', 'now')
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def format_timestamp(value: datetime.datetime) -> str:
    """Render a datetime the way the store's triggers write timestamps.

    Aware values are converted to UTC first; the result has millisecond
    precision so it sorts and compares consistently with trigger output.
    """
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(TIMESTAMP_FORMAT)[:-3]


def parse_timestamp(value: Optional[str]) -> Optional[datetime.datetime]:
    """Parse a stored TEXT timestamp into a naive UTC datetime."""
    if not value:
        return None
    return datetime.datetime.fromisoformat(value)


def generate_id() -> str:
    """Generate an opaque identifier (random UUID4, 122 random bits)."""
    return str(uuid.uuid4())


class Space(BaseModel):
    """A top-level container owning a forest of nodes."""

    id: str = Field(default_factory=generate_id)
    name: str
    sort_order: int = 0

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("Space name cannot be empty")
        return value


class Node(BaseModel):
    """A note or folder inside a space.

    ``parent_id`` of ``None`` marks a root node of its space. Timestamps left
    unset on create are filled in by the insert trigger; supplied ones are kept.
    """

    id: str = Field(default_factory=generate_id)
    space_id: str
    parent_id: Optional[str] = None
    name: str
    content: Optional[str] = None
    is_open: bool = False
    is_pinned: bool = False
    sort_order: int = 0
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("Node name cannot be empty")
        return value


class TreeNode(BaseModel):
    """Nested view of a node and its children, ordered by sort_order."""

    node: Node
    children: List["TreeNode"] = Field(default_factory=list)


class Attachment(BaseModel):
    """Metadata row describing one image blob on disk."""

    id: str
    note_id: str
    filename: str
    file_path: str
    size: int
    mime_type: str
    created_at: datetime.datetime


class UploadResult(BaseModel):
    """Response of an attachment upload."""

    id: str
    path: str
    size: int
