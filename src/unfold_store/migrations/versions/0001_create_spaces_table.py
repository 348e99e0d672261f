"""create_spaces_table

Revision ID: 0001
Revises:
Create Date: 2025-01-06 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the spaces table."""
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS spaces (
            id TEXT PRIMARY KEY NOT NULL,
            name TEXT NOT NULL,
            sort_order INTEGER NOT NULL DEFAULT 0
        )
        """
    )


def downgrade() -> None:
    """The ledger is forward-only."""
    raise NotImplementedError("Schema downgrades are not supported")
