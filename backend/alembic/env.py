"""
Alembic environment configuration for async SQLAlchemy.

- Model metadata from saas_backend.models for autogenerate support
- Database URL from application settings (MIGRATION_DATABASE_URL)
- Script location and file template from [tool.alembic] in pyproject.toml
- Both offline and online migration modes
"""

import asyncio
import sys
import tomllib
from logging.config import dictConfig
from pathlib import Path

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from alembic import context

backend_dir = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_dir))

from saas_backend.core.config import settings  # noqa: E402
from saas_backend.core.database import Base, normalize_database_url  # noqa: E402

# Registers every model on Base.metadata
import saas_backend.models  # noqa: E402,F401

config = context.config

pyproject_path = backend_dir.parent / "pyproject.toml"
if pyproject_path.exists():
    with open(pyproject_path, "rb") as f:
        alembic_config = tomllib.load(f).get("tool", {}).get("alembic", {})

    for option in ("script_location", "file_template"):
        if option in alembic_config:
            config.set_main_option(option, alembic_config[option])

dictConfig({
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "generic": {
            "format": "%(levelname)-5.5s [%(name)s] %(message)s",
            "datefmt": "%H:%M:%S",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
            "formatter": "generic",
        },
    },
    "loggers": {
        "root": {"level": "WARN", "handlers": ["console"]},
        "sqlalchemy.engine": {"level": "WARN", "handlers": []},
        "alembic": {"level": "INFO", "handlers": []},
    },
})

target_metadata = Base.metadata

# Migrations run as the schema owner
config.set_main_option(
    "sqlalchemy.url", normalize_database_url(settings.MIGRATION_DATABASE_URL)
)


def run_migrations_offline() -> None:
    """Emit migration SQL without connecting (for manual review)."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        compare_server_default=True,
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """Run migrations over an async connection without pooling."""
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


def run_migrations_online() -> None:
    asyncio.run(run_async_migrations())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
