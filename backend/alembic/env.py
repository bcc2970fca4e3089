"""Alembic entry point for the billing schema.

Alembic imports this file under its own module name, so the migration run is
dispatched at import time rather than behind a ``__main__`` guard.
"""

from __future__ import annotations

import logging
import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from sqlalchemy import create_engine, pool

# ``backend`` is a namespace package rooted one level above this directory.
PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from backend.app import models  # noqa: E402,F401
from backend.app.database import Base, SQLALCHEMY_DATABASE_URL  # noqa: E402

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

LOGGER = logging.getLogger("alembic.env")


def _billing_database_url() -> str:
    url = config.get_main_option("sqlalchemy.url") or SQLALCHEMY_DATABASE_URL
    config.set_main_option("sqlalchemy.url", url)
    return url


def _context_options(url: str) -> dict:
    # SQLite cannot ALTER most constraints in place.
    return {
        "target_metadata": Base.metadata,
        "render_as_batch": url.startswith("sqlite"),
        "compare_type": True,
    }


def migrate_offline(url: str) -> None:
    """Emit the billing DDL as SQL without connecting."""

    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_context_options(url),
    )
    with context.begin_transaction():
        context.run_migrations()


def migrate_online(url: str) -> None:
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    billing_engine = create_engine(url, poolclass=pool.NullPool, connect_args=connect_args)
    try:
        with billing_engine.connect() as connection:
            context.configure(connection=connection, **_context_options(url))
            with context.begin_transaction():
                context.run_migrations()
    finally:
        billing_engine.dispose()


DATABASE_URL = _billing_database_url()

if context.is_offline_mode():
    LOGGER.info("Generating billing schema SQL offline")
    migrate_offline(DATABASE_URL)
else:
    migrate_online(DATABASE_URL)
