"""
Alembic environment configuration.

This env.py is configured to:
- Load DATABASE_URL from roadquality.core.config.settings
- Use the ORM metadata (condition_records) for autogenerate
- IGNORE PostGIS / extension-managed tables (e.g., spatial_ref_sys, tiger geocoder)
  so Alembic won't try to drop them.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from roadquality.core.config import settings
from roadquality.models import Base  # registers every ORM table on Base.metadata

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = Base.metadata


def include_object(object_, name, type_, reflected, compare_to):
    """
    Only include tables that are part of our SQLAlchemy metadata.

    PostGIS installs its own tables (spatial_ref_sys, topology, tiger geocoder);
    autogenerate must never emit drops for them.
    """
    if type_ == "table":
        return name in target_metadata.tables
    return True


def _configure_kwargs() -> dict:
    return {
        "target_metadata": target_metadata,
        "include_object": include_object,
        "compare_type": True,
        "compare_server_default": True,
    }


def run_migrations_offline() -> None:
    """Emit SQL without connecting to the database."""
    context.configure(
        url=settings.DATABASE_URL,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_kwargs(),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations against a live connection."""
    configuration = config.get_section(config.config_ini_section, {})
    configuration["sqlalchemy.url"] = settings.DATABASE_URL

    connectable = engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(connection=connection, **_configure_kwargs())

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
