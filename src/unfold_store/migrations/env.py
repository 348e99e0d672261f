"""Alembic environment for the note store's migration ledger.

The store-open path hands in its own connection through
``config.attributes["connection"]``. Running the ``alembic`` CLI against
``alembic.ini`` falls back to a fresh engine for the configured store.
"""
from alembic import context

config = context.config


def _run(connection) -> None:
    # One transaction per unit: a failing unit rolls back alone and the
    # version table keeps pointing at the last unit that committed.
    context.configure(
        connection=connection,
        target_metadata=None,
        transaction_per_migration=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations against a live connection."""
    connection = config.attributes.get("connection")
    if connection is not None:
        _run(connection)
        return

    from unfold_store.models.db_models import create_store_engine

    engine = create_store_engine()
    try:
        with engine.connect() as connection:
            _run(connection)
            connection.commit()
    finally:
        engine.dispose()


if context.is_offline_mode():
    # Units inspect the live schema before acting, so they need a connection
    raise RuntimeError("Offline SQL generation is not supported for the note store")

run_migrations_online()
