"""Alembic environment for the agent_memory and interaction tables.

The URL comes from app.db.database.get_database_url(), so migrations target
the same database the API opens (and create the SQLite data directory first).
"""

from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlmodel import SQLModel, create_engine

from app.db.database import get_database_url
from app.models.memory import AgentMemory, Interaction  # noqa: F401

if context.config.config_file_name is not None:
    fileConfig(context.config.config_file_name)

# batch mode: SQLite cannot ALTER most column definitions in place
MIGRATION_OPTIONS = {"target_metadata": SQLModel.metadata, "render_as_batch": True}


def run_migrations(url: str) -> None:
    if context.is_offline_mode():
        context.configure(url=url, literal_binds=True, dialect_opts={"paramstyle": "named"}, **MIGRATION_OPTIONS)
        with context.begin_transaction():
            context.run_migrations()
        return

    with create_engine(url, poolclass=pool.NullPool).connect() as connection:
        context.configure(connection=connection, **MIGRATION_OPTIONS)
        with context.begin_transaction():
            context.run_migrations()


run_migrations(get_database_url())
