"""Migration ledger for the note store.

The ledger is the ordered list of schema units in ``unfold_store/migrations``.
Each unit is an Alembic revision whose id is its zero-padded version number;
Alembic's version table is the bookkeeping that records the highest version
applied. Units are forward-only and written so that re-running one against
a store that already reflects it is harmless, which is what makes resuming
after a crash mid-upgrade safe.
"""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from alembic.util import CommandError
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from unfold_store.exceptions import ErrorCode, SchemaError

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"


@dataclass(frozen=True)
class MigrationUnit:
    """One versioned schema change."""
    version: int
    description: str


def format_version(version: int) -> str:
    """Render a ledger version as its Alembic revision id."""
    return f"{version:04d}"


def _alembic_config(connection=None) -> Config:
    cfg = Config()
    cfg.set_main_option("script_location", str(MIGRATIONS_DIR))
    if connection is not None:
        cfg.attributes["connection"] = connection
    return cfg


def list_migrations() -> List[MigrationUnit]:
    """Return every unit of the ledger in ascending version order."""
    script = ScriptDirectory.from_config(_alembic_config())
    units = [
        MigrationUnit(version=int(rev.revision), description=(rev.doc or "").strip())
        for rev in script.walk_revisions()
    ]
    return sorted(units, key=lambda unit: unit.version)


def head_version() -> int:
    """Version of the newest unit."""
    return list_migrations()[-1].version


def current_version(engine: Engine) -> int:
    """Highest version applied to the store, 0 for a fresh store."""
    with engine.connect() as connection:
        revision = MigrationContext.configure(connection).get_current_revision()
    return int(revision) if revision else 0


def _resolve_target(target_version: Optional[int]) -> str:
    if target_version is None:
        return "head"
    known = {unit.version for unit in list_migrations()}
    if target_version not in known:
        raise SchemaError(
            f"Unknown schema version {target_version}",
            version=target_version,
            code=ErrorCode.UNKNOWN_SCHEMA_VERSION,
        )
    return format_version(target_version)


def upgrade(engine: Engine, target_version: Optional[int] = None) -> int:
    """Apply every unit above the current version, in ascending order.

    Each unit runs in its own transaction together with the version bump,
    so a failure leaves the store at the last unit that fully committed.

    Args:
        engine: Store engine from ``create_store_engine``.
        target_version: Version to stop at. ``None`` applies all units.

    Returns:
        The version recorded after the upgrade.

    Raises:
        SchemaError: If the target is unknown or a unit fails.
    """
    target = _resolve_target(target_version)
    before = current_version(engine)
    if target_version is not None and before > target_version:
        # Forward-only: a newer store is left as it is
        logger.warning(
            f"Store is at schema version {before}, newer than requested {target_version}"
        )
        return before

    try:
        with engine.connect() as connection:
            command.upgrade(_alembic_config(connection), target)
            connection.commit()
    except (SQLAlchemyError, CommandError) as e:
        failed_at = current_version(engine)
        logger.error(f"Schema migration failed after version {failed_at}: {e}")
        raise SchemaError(
            f"Schema migration failed; store left at version {failed_at}",
            version=failed_at,
            code=ErrorCode.MIGRATION_FAILED,
            original_error=e,
        ) from e

    after = current_version(engine)
    if after != before:
        logger.info(f"Migrated note store schema from version {before} to {after}")
    else:
        logger.debug(f"Note store schema already at version {after}")
    return after


def stamp(engine: Engine, version: int) -> None:
    """Record ``version`` as applied without running any unit.

    ``0`` clears the bookkeeping entirely. Used when recovering a store whose
    version table was lost; the next ``upgrade`` re-applies the later units.
    """
    target = "base" if version == 0 else _resolve_target(version)
    try:
        with engine.connect() as connection:
            command.stamp(_alembic_config(connection), target)
            connection.commit()
    except (SQLAlchemyError, CommandError) as e:
        raise SchemaError(
            f"Failed to stamp schema version {version}",
            version=version,
            original_error=e,
        ) from e
    logger.info(f"Stamped note store schema at version {version}")
