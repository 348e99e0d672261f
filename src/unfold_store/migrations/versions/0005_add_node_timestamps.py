"""add_node_timestamps

Revision ID: 0005
Revises: 0004
Create Date: 2025-04-02 18:20:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0005"
down_revision: Union[str, Sequence[str], None] = "0004"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add created_at/updated_at to nodes and keep them current with triggers.

    SQLite doesn't support IF NOT EXISTS for ADD COLUMN, so we check
    the schema first. This is idempotent and safe to run multiple times.
    """
    columns = {col["name"] for col in sa.inspect(op.get_bind()).get_columns("nodes")}
    for column in ("created_at", "updated_at"):
        if column not in columns:
            op.execute(f"ALTER TABLE nodes ADD COLUMN {column} TEXT")

    op.execute(
        """
        UPDATE nodes
        SET created_at = COALESCE(created_at, datetime('now')),
            updated_at = COALESCE(updated_at, datetime('now'))
        """
    )
    op.execute(
        """
        CREATE TRIGGER IF NOT EXISTS nodes_set_timestamps_on_insert
        AFTER INSERT ON nodes
        FOR EACH ROW
        WHEN NEW.created_at IS NULL OR NEW.updated_at IS NULL
        BEGIN
            UPDATE nodes
            SET created_at = COALESCE(NEW.created_at, datetime('now')),
                updated_at = COALESCE(NEW.updated_at, datetime('now'))
            WHERE id = NEW.id;
        END
        """
    )
    op.execute(
        """
        CREATE TRIGGER IF NOT EXISTS nodes_touch_updated_at
        AFTER UPDATE OF name, content ON nodes
        FOR EACH ROW
        BEGIN
            UPDATE nodes
            SET updated_at = datetime('now')
            WHERE id = NEW.id;
        END
        """
    )


def downgrade() -> None:
    """The ledger is forward-only."""
    raise NotImplementedError("Schema downgrades are not supported")
