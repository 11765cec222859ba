# src/CMS/db/migrations/env.py
from __future__ import annotations

import asyncio
import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config

from CMS.db.models import Base

# Alembic Config object
config = context.config

# Logging
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _cli_sqlalchemy_url_override() -> str | None:
    x = context.get_x_argument(as_dictionary=True)
    return x.get("sqlalchemy_url") or x.get("url")


def _choose_url() -> str:
    url = _cli_sqlalchemy_url_override() or os.getenv("DATABASE_URL") or os.getenv("ASYNC_DATABASE_URL")
    if not url:
        from CMS.core.config import settings
        url = settings.DATABASE_URL
    return url


def run_migrations_offline() -> None:
    context.configure(
        url=_choose_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        render_as_batch=_choose_url().startswith("sqlite"),
    )
    with context.begin_transaction():
        context.run_migrations()


def _do_run_migrations(connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=connection.dialect.name == "sqlite",
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    section = config.get_section(config.config_ini_section) or {}
    section["sqlalchemy.url"] = _choose_url()
    engine = async_engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)
    async with engine.connect() as connection:
        await connection.run_sync(_do_run_migrations)
    await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
