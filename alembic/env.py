"""Migrations for the message store.

The URL is the relay's own ``third_party.postgres_uri`` unless
``alembic -x db_url=...`` names another database.
"""

import asyncio

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine

from chatrelay.infra.db.models import Base

_OPTIONS = {"target_metadata": Base.metadata, "compare_type": True}


def _database_url() -> str:
    override = context.get_x_argument(as_dictionary=True).get("db_url")
    if override:
        return override
    from chatrelay.configs.config import get_app_config

    return get_app_config().third_party.postgres_uri


def _migrate(connection=None, **extra) -> None:
    context.configure(connection=connection, **_OPTIONS, **extra)
    with context.begin_transaction():
        context.run_migrations()


async def _migrate_online() -> None:
    engine = create_async_engine(_database_url(), poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_migrate)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    _migrate(
        url=_database_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
else:
    asyncio.run(_migrate_online())
