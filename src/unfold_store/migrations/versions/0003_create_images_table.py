"""create_images_table

Revision ID: 0003
Revises: 0002
Create Date: 2025-02-14 09:30:00.000000

"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0003"
down_revision: Union[str, Sequence[str], None] = "0002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the attachment metadata table."""
    # note_id is deliberately not a foreign key: attachments outlive edits
    # that temporarily drop the image from a note
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS images (
            id TEXT PRIMARY KEY NOT NULL,
            note_id TEXT NOT NULL,
            filename TEXT NOT NULL,
            file_path TEXT NOT NULL,
            size TEXT NOT NULL,
            mime_type TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """
    )
    op.execute("CREATE INDEX IF NOT EXISTS idx_images_note_id ON images(note_id)")
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_images_created_at ON images(created_at)"
    )


def downgrade() -> None:
    """The ledger is forward-only."""
    raise NotImplementedError("Schema downgrades are not supported")
