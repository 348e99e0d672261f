"""SQLAlchemy database models and the store handle for the Unfold note store.

The tables themselves are created and evolved by the migration ledger
(``unfold_store/migrations``), never by ``metadata.create_all``. The
declarations here only describe the shape the ledger produces so that the
repositories can issue typed statements against it.
"""
import logging
from pathlib import Path
from typing import Optional, Union

from sqlalchemy import (Boolean, Column, ForeignKey, Integer, Text,
                        create_engine, event)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool

from unfold_store.config import config
from unfold_store.exceptions import ErrorCode, SchemaError

logger = logging.getLogger(__name__)

# Create base class for SQLAlchemy models
Base = declarative_base()


class DBSpace(Base):
    """Database model for a space."""
    __tablename__ = "spaces"
    id = Column(Text, primary_key=True)
    name = Column(Text, nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        """Return string representation of space."""
        return f"<Space(id='{self.id}', name='{self.name}')>"


class DBNode(Base):
    """Database model for a node (note or folder).

    Both references cascade on delete inside SQLite, so removing a space or
    a node removes the whole subtree without application-side recursion.
    """
    __tablename__ = "nodes"
    id = Column(Text, primary_key=True)
    space_id = Column(
        Text, ForeignKey("spaces.id", ondelete="CASCADE"), nullable=False, index=True
    )
    parent_id = Column(
        Text, ForeignKey("nodes.id", ondelete="CASCADE"), nullable=True, index=True
    )
    name = Column(Text, nullable=False)
    content = Column(Text, nullable=True)
    is_open = Column(Boolean, nullable=False, default=False)
    is_pinned = Column(Boolean, nullable=False, default=False)
    sort_order = Column(Integer, nullable=False, default=0)
    # Filled and refreshed by triggers; see migration 0005/0006
    created_at = Column(Text, nullable=True)
    updated_at = Column(Text, nullable=True)

    def __repr__(self) -> str:
        """Return string representation of node."""
        return f"<Node(id='{self.id}', name='{self.name}', parent='{self.parent_id}')>"


class DBImage(Base):
    """Database model for an image attachment's metadata.

    ``note_id`` is a logical reference only; attachments are not removed by
    the node cascade.
    """
    __tablename__ = "images"
    id = Column(Text, primary_key=True)
    note_id = Column(Text, nullable=False, index=True)
    filename = Column(Text, nullable=False)
    file_path = Column(Text, nullable=False)
    size = Column(Text, nullable=False)
    mime_type = Column(Text, nullable=False)
    created_at = Column(Text, nullable=False, index=True)

    def __repr__(self) -> str:
        """Return string representation of image."""
        return f"<Image(id='{self.id}', note_id='{self.note_id}')>"


def create_store_engine(database_path: Optional[Union[str, Path]] = None) -> Engine:
    """Create the engine that owns the store's single connection.

    The pool holds exactly one connection. Callers on other threads wait
    for it instead of opening their own.

    Every connection gets:
    - WAL journal so readers keep a consistent snapshot while a writer runs
    - foreign key enforcement, which the cascade deletes depend on
    - transactional DDL: pysqlite's implicit BEGIN handling is disabled and
      we emit BEGIN ourselves, so schema changes roll back with their unit
    """
    if database_path is None:
        url = config.get_db_url()
    else:
        db_path = Path(database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        url = f"sqlite:///{db_path}"

    engine = create_engine(
        url,
        poolclass=QueuePool,
        pool_size=1,
        max_overflow=0,
        pool_timeout=30,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        # Autocommit at the driver level; transactions are begun explicitly
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def init_db(
    database_path: Optional[Union[str, Path]] = None,
    target_version: Optional[int] = None,
) -> Engine:
    """Open the store and bring its schema to ``target_version``.

    This is the only way the rest of the package obtains an engine: the
    migration ledger always runs to completion before any repository issues
    a statement.

    Args:
        database_path: Store file. Defaults to the configured channel path.
        target_version: Ledger version to reach. ``None`` means the newest.

    Returns:
        The migrated engine.

    Raises:
        SchemaError: If any migration unit fails. The store is left at the
            last fully committed version.
    """
    from unfold_store.storage.ledger import upgrade

    engine = create_store_engine(database_path)
    try:
        version = upgrade(engine, target_version)
    except SchemaError:
        engine.dispose()
        raise
    except Exception as e:
        engine.dispose()
        raise SchemaError(
            "Failed to open the note store",
            code=ErrorCode.STORAGE_CONNECTION_FAILED,
            original_error=e,
        ) from e

    logger.info(f"Note store ready at {engine.url.database} (schema version {version})")
    return engine


def get_session_factory(engine=None):
    """Get a session factory for the database."""
    if engine is None:
        engine = init_db()
    return sessionmaker(bind=engine)
