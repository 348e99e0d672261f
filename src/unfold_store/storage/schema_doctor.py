"""Diagnostics and repair for drift between the live schema and the expected one.

Checks only read and never raise: they describe what they found and leave
the decision to repair to the caller. Repair narrows the ``nodes`` table
with a shadow-table rebuild, which also restores the canonical constraints
and triggers on a legacy table.
"""
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Set

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from unfold_store.config import config
from unfold_store.exceptions import ErrorCode, SchemaError
from unfold_store.models.db_models import DBImage

logger = logging.getLogger(__name__)

# Canonical nodes shape; order matters for the copy statement
NODE_COLUMNS = (
    "id",
    "space_id",
    "parent_id",
    "name",
    "content",
    "is_open",
    "is_pinned",
    "sort_order",
    "created_at",
    "updated_at",
)
OBSOLETE_NODE_COLUMNS = ("type",)

_NODES_SHADOW_DDL = """
    CREATE TABLE nodes_new (
        id TEXT PRIMARY KEY NOT NULL,
        space_id TEXT NOT NULL,
        parent_id TEXT,
        name TEXT NOT NULL,
        content TEXT,
        is_open INTEGER NOT NULL DEFAULT 0,
        is_pinned INTEGER NOT NULL DEFAULT 0,
        sort_order INTEGER NOT NULL DEFAULT 0,
        created_at TEXT,
        updated_at TEXT,
        FOREIGN KEY (space_id) REFERENCES spaces(id) ON DELETE CASCADE,
        FOREIGN KEY (parent_id) REFERENCES nodes(id) ON DELETE CASCADE
    )
"""

_NODES_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_nodes_space_id ON nodes(space_id)",
    "CREATE INDEX IF NOT EXISTS idx_nodes_parent_id ON nodes(parent_id)",
)

# Dropping the old table drops its triggers; these match migration 0006
_NODES_TRIGGERS = (
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
    """,
    """
    CREATE TRIGGER IF NOT EXISTS nodes_touch_updated_at
    AFTER UPDATE OF name, content ON nodes
    FOR EACH ROW
    BEGIN
        UPDATE nodes
        SET updated_at = strftime('%Y-%m-%d %H:%M:%f', 'now')
        WHERE id = NEW.id;
    END
    """,
)


@dataclass
class TableReport:
    """Live shape of one table compared with what we expect."""
    table: str
    exists: bool
    columns: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    obsolete: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.exists and not self.missing and not self.obsolete


class SchemaDoctor:
    """Inspects and heals the live schema of the note store."""

    def __init__(self, engine: Engine, images_dir: Optional[Path] = None):
        self.engine = engine
        self._images_dir = Path(images_dir) if images_dir else None

    @property
    def database_path(self) -> str:
        return str(self.engine.url.database)

    def table_columns(self, table: str) -> List[str]:
        """Column names of ``table`` in declaration order; empty if it doesn't exist."""
        with self.engine.connect() as conn:
            rows = conn.exec_driver_sql(f'PRAGMA table_info("{table}")').fetchall()
        return [row[1] for row in rows]

    def inspect_table(
        self,
        table: str,
        required: Sequence[str] = (),
        obsolete: Sequence[str] = (),
    ) -> TableReport:
        """Compare a table's live columns with required and obsolete column sets."""
        columns = self.table_columns(table)
        if not columns:
            return TableReport(table=table, exists=False, missing=list(required))
        present = set(columns)
        return TableReport(
            table=table,
            exists=True,
            columns=columns,
            missing=[c for c in required if c not in present],
            obsolete=[c for c in obsolete if c in present],
        )

    def check_database_schema(self) -> str:
        """Verdict on the images table, which must carry ``file_path``."""
        try:
            report = self.inspect_table("images", required=("file_path",))
        except SQLAlchemyError as e:
            logger.error(f"Schema check failed: {e}")
            return f"✗ Could not read the database schema: {e}\nDB at: {self.database_path}"

        if not report.exists:
            return (
                "✗ Images table does not exist.\n"
                f"DB at: {self.database_path}\n\n"
                "To fix: restart the app so pending migrations run."
            )
        if report.missing:
            return (
                "✗ Images table exists but missing 'file_path' column.\n"
                f"Columns: {report.columns}\n"
                f"DB at: {self.database_path}\n\n"
                "To fix: back up and delete this database file, then restart the app."
            )
        return f"✓ Database schema is correct. DB at: {self.database_path}"

    def check_nodes_schema(self) -> str:
        """Report the nodes columns and whether the obsolete ``type`` column is present."""
        try:
            report = self.inspect_table("nodes", obsolete=OBSOLETE_NODE_COLUMNS)
        except SQLAlchemyError as e:
            logger.error(f"Nodes schema check failed: {e}")
            return f"✗ Could not read the nodes schema: {e}\nDB: {self.database_path}"

        if not report.exists:
            return f"✗ Nodes table does not exist.\nDB: {self.database_path}"
        return (
            f"nodes columns: {report.columns}\n"
            f"contains 'type': {'type' in report.obsolete}\n"
            f"DB: {self.database_path}"
        )

    def repair_nodes_schema(self) -> str:
        """Drop obsolete columns from ``nodes`` with an atomic shadow-table rebuild.

        A no-op that reports success when nothing obsolete is present.

        Raises:
            SchemaError: If the rebuild fails; the transaction is rolled back
                and the table is left exactly as it was.
        """
        report = self.inspect_table("nodes", obsolete=OBSOLETE_NODE_COLUMNS)
        if not report.exists:
            raise SchemaError(
                "Nodes table does not exist; run migrations first",
                table="nodes",
                code=ErrorCode.SCHEMA_UNEXPECTED,
            )
        if not report.obsolete:
            return "nodes schema OK (no 'type' column)"

        retained = [c for c in NODE_COLUMNS if c in set(report.columns)]
        column_list = ", ".join(retained)

        with self.engine.connect() as conn:
            # Must be switched off outside a transaction: with enforcement on,
            # dropping the old table would cascade into the shadow table
            dbapi_conn = conn.connection.dbapi_connection
            dbapi_conn.execute("PRAGMA foreign_keys=OFF")
            try:
                with conn.begin():
                    before = conn.exec_driver_sql("SELECT COUNT(*) FROM nodes").scalar()
                    conn.exec_driver_sql("DROP TABLE IF EXISTS nodes_new")
                    conn.exec_driver_sql(_NODES_SHADOW_DDL)
                    conn.exec_driver_sql(
                        f"INSERT INTO nodes_new ({column_list}) "
                        f"SELECT {column_list} FROM nodes"
                    )
                    conn.exec_driver_sql("DROP TABLE nodes")
                    conn.exec_driver_sql("ALTER TABLE nodes_new RENAME TO nodes")
                    conn.exec_driver_sql(
                        "UPDATE nodes "
                        "SET created_at = COALESCE(created_at, strftime('%Y-%m-%d %H:%M:%f', 'now')), "
                        "updated_at = COALESCE(updated_at, strftime('%Y-%m-%d %H:%M:%f', 'now')) "
                        "WHERE created_at IS NULL OR updated_at IS NULL"
                    )
                    for statement in _NODES_INDEXES + _NODES_TRIGGERS:
                        conn.exec_driver_sql(statement)

                    after = conn.exec_driver_sql("SELECT COUNT(*) FROM nodes").scalar()
                    if after != before:
                        raise SchemaError(
                            f"Row count changed during rebuild ({before} -> {after})",
                            table="nodes",
                            code=ErrorCode.SCHEMA_REPAIR_FAILED,
                        )
                    violations = conn.exec_driver_sql(
                        "PRAGMA foreign_key_check(nodes)"
                    ).fetchall()
                    if violations:
                        raise SchemaError(
                            f"Rebuilt nodes table has {len(violations)} dangling references",
                            table="nodes",
                            code=ErrorCode.SCHEMA_REPAIR_FAILED,
                        )
            except SQLAlchemyError as e:
                logger.error(f"Nodes schema repair failed: {e}")
                raise SchemaError(
                    "Failed to repair nodes schema",
                    table="nodes",
                    code=ErrorCode.SCHEMA_REPAIR_FAILED,
                    original_error=e,
                ) from e
            finally:
                dbapi_conn.execute("PRAGMA foreign_keys=ON")

        removed = ", ".join(f"'{c}'" for c in report.obsolete)
        logger.info(f"Rebuilt nodes table without {removed} ({after} rows kept)")
        return f"Repaired nodes schema (removed {removed} column)"

    def check_attachments(self) -> str:
        """Report blob/row divergence between the images table and the blob directory.

        Read-only: lists rows whose blob is missing and blob files no row
        points at, without deleting either.
        """
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(select(DBImage.id, DBImage.file_path)).fetchall()
        except SQLAlchemyError as e:
            logger.error(f"Attachment check failed: {e}")
            return f"✗ Could not read the images table: {e}"

        referenced: Set[str] = set()
        dangling: List[str] = []
        for attachment_id, file_path in rows:
            path = Path(file_path)
            referenced.add(path.name)
            if not path.is_file():
                dangling.append(attachment_id)

        orphans: List[str] = []
        try:
            images_dir = self._images_dir or config.get_images_dir()
            if images_dir.is_dir():
                orphans = sorted(
                    p.name for p in images_dir.iterdir()
                    if p.is_file() and p.name not in referenced
                )
        except OSError as e:
            logger.error(f"Attachment check could not list the images directory: {e}")
            return f"✗ Could not read the images directory: {e}"

        if not dangling and not orphans:
            return f"✓ {len(rows)} attachments consistent with {images_dir}"

        lines = [f"✗ Attachment store diverged from {images_dir}"]
        if dangling:
            lines.append(f"Rows without a file ({len(dangling)}): {', '.join(sorted(dangling))}")
        if orphans:
            lines.append(f"Files without a row ({len(orphans)}): {', '.join(orphans)}")
        return "\n".join(lines)
