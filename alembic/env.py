"""
Alembic environment for the metering schema.

Online migrations reuse DatabaseManager, so they connect exactly like the
library does (direct URL or Cloud SQL connector).
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from dotenv import load_dotenv
from sqlalchemy.engine import Connection

load_dotenv()

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

from metering_core.db import DatabaseManager
from metering_core.db.config import get_db_config
from metering_core.models import Base  # registers accounts, agents, daily_usage_records

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Render SQL for the configured URL without connecting."""
    context.configure(
        url=get_db_config().get_connection_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    manager = DatabaseManager(get_db_config())
    await manager.initialize()
    try:
        async with manager.engine.connect() as connection:
            await connection.run_sync(do_run_migrations)
    finally:
        await manager.close()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
