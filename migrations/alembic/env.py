"""Alembic environment.

The database URL comes from DATABASE_URL (via Settings), never from alembic.ini.
Log output goes through the same structlog setup as the API.
"""

from alembic import context
from sqlalchemy import engine_from_config, pool

from chatrelay.config import get_settings
from chatrelay.db.models import Base
from chatrelay.logging import configure_logging

settings = get_settings()
configure_logging(json_format=settings.log_json, level=settings.log_level)

config = context.config
config.set_main_option("sqlalchemy.url", settings.database_url)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
