"""node_timestamp_precision

Revision ID: 0006
Revises: 0005
Create Date: 2025-06-11 08:10:00.000000

"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0006"
down_revision: Union[str, Sequence[str], None] = "0005"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Recreate the node timestamp triggers with millisecond resolution.

    datetime('now') only resolves whole seconds, so two edits within the
    same second left updated_at unchanged.
    """
    op.execute("DROP TRIGGER IF EXISTS nodes_set_timestamps_on_insert")
    op.execute("DROP TRIGGER IF EXISTS nodes_touch_updated_at")
    op.execute(
        """
        CREATE TRIGGER IF NOT EXISTS nodes_set_timestamps_on_insert
        AFTER INSERT ON nodes
        FOR EACH ROW
        WHEN NEW.created_at IS NULL OR NEW.updated_at IS NULL
        BEGIN
            UPDATE nodes
            SET created_at = COALESCE(NEW.created_at, strftime('%Y-%m-%d %H:%M:%f', 'now')),
                updated_at = COALESCE(NEW.updated_at, strftime('%Y-%m-%d %H:%M:%f', 'now'))
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
            SET updated_at = strftime('%Y-%m-%d %H:%M:%f', 'now')
            WHERE id = NEW.id;
        END
        """
    )


def downgrade() -> None:
    """The ledger is forward-only."""
    raise NotImplementedError("Schema downgrades are not supported")
