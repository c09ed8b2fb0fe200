"""
Alembic environment for the storefront schema.

The target database is always the one in ``STOREFRONT_DATABASE_URL``;
``sqlalchemy.url`` in alembic.ini is ignored. SQLite runs use batch mode so
ALTERs work there too.
"""

from logging.config import fileConfig
from typing import Callable

from alembic import context
from sqlalchemy import engine_from_config, pool

import storefront.database.models  # noqa: F401  registers every table
from storefront.core.config import get_settings
from storefront.core.logging import get_logger
from storefront.database.base import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = get_logger("storefront.migrations")

DATABASE_URL = get_settings().database_url
config.set_main_option("sqlalchemy.url", DATABASE_URL)


def _run(mode: str, migrate: Callable[[], None]) -> None:
    logger.info("Applying migrations", mode=mode, dialect=DATABASE_URL.split("://")[0])
    try:
        migrate()
    except Exception as e:
        logger.error("Migrations failed", mode=mode, error=str(e), error_type=type(e).__name__)
        raise
    logger.info("Migrations applied", mode=mode)


def run_migrations_offline() -> None:
    """Emit the migration SQL to the script output without connecting."""
    context.configure(
        url=DATABASE_URL,
        target_metadata=Base.metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    try:
        with connectable.connect() as connection:
            context.configure(
                connection=connection,
                target_metadata=Base.metadata,
                compare_type=True,
                render_as_batch=connection.dialect.name == "sqlite",
            )
            with context.begin_transaction():
                context.run_migrations()
    finally:
        connectable.dispose()


if context.is_offline_mode():
    _run("offline", run_migrations_offline)
else:
    _run("online", run_migrations_online)
