"""insert_default_space

Revision ID: 0004
Revises: 0003
Create Date: 2025-02-14 09:45:00.000000

"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0004"
down_revision: Union[str, Sequence[str], None] = "0003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Guarantee the well-known default space exists."""
    op.execute(
        "INSERT OR IGNORE INTO spaces (id, name, sort_order) "
        "VALUES ('default-space-mine', 'mine', 0)"
    )


def downgrade() -> None:
    """The ledger is forward-only."""
    raise NotImplementedError("Schema downgrades are not supported")
