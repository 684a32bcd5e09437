"""Alembic environment configuration for MatterDesk.

This file wires Alembic to:
- the same DATABASE_URL used by the application (via api.app.config.Settings),
  unless the Alembic config carries its own ``sqlalchemy.url``
- the SQLAlchemy metadata defined on api.app.db.Base

Run from matterdesk/api with ``alembic upgrade head``; alembic.ini puts the
matterdesk directory on sys.path.
"""

from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from api.app.config import settings
from api.app.db import Base
from api.app import models  # noqa: F401  (registers tables on Base.metadata)

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = Base.metadata


def get_url() -> str:
    """Return the database URL used for migrations.

    An explicit ``sqlalchemy.url`` (e.g. set by a test harness) wins;
    otherwise migrations run against the application's database.
    """
    return config.get_main_option("sqlalchemy.url") or settings.DATABASE_URL


def run_migrations_offline() -> None:
    """Emit SQL for the migrations without connecting."""
    context.configure(
        url=get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        render_as_batch=get_url().startswith("sqlite"),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations against a live connection."""
    url = get_url()
    connectable = create_engine(url, poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=url.startswith("sqlite"),
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
