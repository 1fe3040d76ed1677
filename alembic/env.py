"""Alembic environment.

Runs either against a connection shared through ``config.attributes``
(``newsletter.database.migrations.run_migrations``) or, from the CLI,
against the database described by ``configuration/``.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy.engine import Connection

from newsletter.config import get_configuration
from newsletter.database.postgres import create_pool
from newsletter.database.schema import Base

config = context.config

# Only configure logging for CLI runs; programmatic runs keep the service's handlers
if config.config_file_name is not None and "connection" not in config.attributes:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Emit SQL to stdout without a database connection."""
    url = get_configuration().database.connection_url()
    context.configure(
        url=url.render_as_string(hide_password=False),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata)

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    pool = create_pool(get_configuration().database)

    async with pool.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await pool.dispose()


def run_migrations_online() -> None:
    connection = config.attributes.get("connection", None)

    if connection is None:
        asyncio.run(run_async_migrations())
    else:
        do_run_migrations(connection)


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
