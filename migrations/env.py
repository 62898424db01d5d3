"""
Alembic environment configuration for async database migrations.

This module configures the Alembic migration environment with async support,
model imports, and migration context for both offline and online modes.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from marketplace.core.config import get_settings
from marketplace.core.logging import get_logger
from marketplace.database.connection import _convert_database_url_to_async

# Importing the models package registers every table with Base.metadata
from marketplace.database.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

settings = get_settings()
logger = get_logger(__name__)

target_metadata = Base.metadata

if settings.database_url:
    config.set_main_option(
        "sqlalchemy.url", _convert_database_url_to_async(settings.database_url)
    )


def run_migrations_offline() -> None:
    """
    Run migrations in 'offline' mode.

    Configures the context with just a URL, so no DBAPI is needed; the
    migration SQL is emitted to the script output.
    """
    url = config.get_main_option("sqlalchemy.url")
    if not url:
        logger.error("No database URL configured for offline migrations")
        raise ValueError("Database URL is required for migrations")

    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=True,
    )

    with context.begin_transaction():
        context.run_migrations()
    logger.info("Offline migrations completed successfully")


def do_run_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        compare_server_default=True,
        transaction_per_migration=True,
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """
    Run migrations in 'online' mode with an async engine.
    """
    configuration = config.get_section(config.config_ini_section, {})
    if not configuration:
        logger.error("No configuration section found in alembic.ini")
        raise ValueError("Alembic configuration is missing")

    connectable = async_engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    try:
        async with connectable.connect() as connection:
            await connection.run_sync(do_run_migrations)
    except Exception as e:
        logger.error(
            "Async migration failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        await connectable.dispose()

    logger.info("Online migrations completed successfully")


def run_migrations_online() -> None:
    asyncio.run(run_async_migrations())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
