"""Alembic environment for the qbank schema (processing_queue, articles).

Runs migrations through the async asyncpg engine used by the application.
The database URL always comes from qbank settings (QBANK_DATABASE_URL), so
alembic.ini carries no credentials.
"""

import asyncio
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from alembic import context

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

from qbank.config import settings  # noqa: E402
from qbank.db.models import Base  # noqa: E402

target_metadata = Base.metadata
config.set_main_option("sqlalchemy.url", settings.database_url)


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        **kwargs,
    )


def do_run_migrations(connection: Connection) -> None:
    # Autogenerate has to recognise vector(N) columns on articles.embedding
    from pgvector.sqlalchemy import register_vector  # noqa: PLC0415

    register_vector(connection)
    _configure(connection=connection)

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """Migrate over a single unpooled async connection."""
    connectable = create_async_engine(settings.database_url, poolclass=pool.NullPool)
    try:
        async with connectable.connect() as connection:
            await connection.run_sync(do_run_migrations)
    finally:
        await connectable.dispose()


def run_migrations_offline() -> None:
    """Emit the migration SQL to stdout instead of applying it."""
    _configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
