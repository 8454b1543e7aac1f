"""Alembic environment for the shared tenant registry.

Only the shared schema (SHARED_SCHEMA, default "shared") is managed here:
  alembic upgrade head

Tenant schemas are versioned per schema by MigrationRunner and their own
schema_migrations ledger, not by Alembic.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool, text

from src.tenancy.config import get_settings
from src.tenancy.core.database import SharedBase, shared_translate_map
from src.tenancy.core.identifiers import quote_ident

# Registers the Tenant model on SharedBase.metadata
import src.tenancy.models.shared  # noqa: F401

# Alembic Config object
config = context.config

# Interpret the config file for Python logging
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = SharedBase.metadata


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    settings = get_settings()
    url = settings.DATABASE_URL.replace("+asyncpg", "")

    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        version_table_schema=settings.SHARED_SCHEMA,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    settings = get_settings()
    url = settings.DATABASE_URL.replace("+asyncpg", "")

    connectable = create_engine(url, poolclass=pool.NullPool)

    with connectable.connect() as connection:
        # Alembic's version table lives in the shared schema
        connection.execute(text(f"CREATE SCHEMA IF NOT EXISTS {quote_ident(settings.SHARED_SCHEMA)}"))
        connection.commit()

        connection = connection.execution_options(schema_translate_map=shared_translate_map())

        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            version_table_schema=settings.SHARED_SCHEMA,
            include_schemas=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
