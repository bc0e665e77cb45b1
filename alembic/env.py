"""Alembic environment for the review sync schema.

The target URL always comes from ``REVIEW_WATCH_DATABASE_URL`` via the
runtime settings; ``sqlalchemy.url`` in alembic.ini is ignored.
"""

from __future__ import annotations

import logging
from logging.config import fileConfig

from sqlalchemy import create_engine, pool

from alembic import context  # type: ignore[import-untyped]
from review_watch.models import records  # noqa: F401
from review_watch.models.base import Base
from review_watch.utils.config import ensure_runtime_configuration

alembic_config = context.config
if alembic_config.config_file_name is not None:
    fileConfig(alembic_config.config_file_name, disable_existing_loggers=False)

logger = logging.getLogger("alembic.env")


def _target_url() -> str:
    settings = ensure_runtime_configuration()
    if not settings.database_url:
        raise RuntimeError("REVIEW_WATCH_DATABASE_URL must be set to run migrations")
    return settings.database_url


def _configure(**options: object) -> None:
    context.configure(
        target_metadata=Base.metadata,
        compare_type=True,
        render_as_batch=True,
        transaction_per_migration=True,
        **options,
    )


def run_offline() -> None:
    _configure(url=_target_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def run_online() -> None:
    engine = create_engine(_target_url(), poolclass=pool.NullPool)
    with engine.connect() as connection:
        logger.info("Migrating %s", connection.engine.url.render_as_string(hide_password=True))
        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()
    engine.dispose()


if context.is_offline_mode():
    run_offline()
else:
    run_online()
