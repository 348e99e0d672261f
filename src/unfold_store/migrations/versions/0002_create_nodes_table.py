"""create_nodes_table

Revision ID: 0002
Revises: 0001
Create Date: 2025-01-06 10:05:00.000000

"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: Union[str, Sequence[str], None] = "0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the nodes adjacency list with cascading references."""
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS nodes (
            id TEXT PRIMARY KEY NOT NULL,
            space_id TEXT NOT NULL,
            parent_id TEXT,
            name TEXT NOT NULL,
            content TEXT,
            is_open INTEGER NOT NULL DEFAULT 0,
            is_pinned INTEGER NOT NULL DEFAULT 0,
            sort_order INTEGER NOT NULL DEFAULT 0,
            FOREIGN KEY (space_id) REFERENCES spaces(id) ON DELETE CASCADE,
            FOREIGN KEY (parent_id) REFERENCES nodes(id) ON DELETE CASCADE
        )
        """
    )
    op.execute("CREATE INDEX IF NOT EXISTS idx_nodes_space_id ON nodes(space_id)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_nodes_parent_id ON nodes(parent_id)")


def downgrade() -> None:
    """The ledger is forward-only."""
    raise NotImplementedError("Schema downgrades are not supported")
