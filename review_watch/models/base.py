"""Declarative base, the UTC datetime column type and the shared engine."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Any

from sqlalchemy import DateTime, Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, close_all_sessions, sessionmaker
from sqlalchemy.types import TypeDecorator

from ..utils.config import GlobalSettings, get_settings

DEFAULT_DATABASE_URL = "sqlite:///./review_watch.db"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime column stored as UTC on every backend.

    SQLite drops tzinfo on write, so values are normalised to UTC before
    binding and re-tagged as UTC when loaded.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all review_watch tables."""


@dataclass(slots=True)
class _Database:
    engine: Engine
    sessions: sessionmaker[Session]


_database: _Database | None = None
_database_lock = Lock()


def build_engine(settings: GlobalSettings) -> Engine:
    """Create an engine for ``settings.database_url`` with pool options applied."""

    url = settings.database_url or DEFAULT_DATABASE_URL
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})

    pool = settings.database
    options: dict[str, Any] = {
        "pool_size": pool.pool_size,
        "max_overflow": pool.max_overflow,
        "pool_timeout": pool.timeout,
        "pool_pre_ping": pool.pre_ping,
    }
    if pool.recycle_seconds > 0:
        options["pool_recycle"] = pool.recycle_seconds
    return create_engine(url, **options)


def _database_handle() -> _Database:
    global _database
    with _database_lock:
        if _database is None:
            engine = build_engine(get_settings())
            # Mapped classes must be registered before create_all.
            from . import records  # noqa: F401

            Base.metadata.create_all(bind=engine)
            _database = _Database(
                engine=engine,
                sessions=sessionmaker(bind=engine, autoflush=False, expire_on_commit=False),
            )
        return _database


def get_engine() -> Engine:
    """Return the process-wide engine, creating tables on first use."""

    return _database_handle().engine


@contextmanager
def session_scope() -> Iterator[Session]:
    """Yield a session that commits on success and rolls back on error."""

    session = _database_handle().sessions()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def reset_engine() -> None:
    """Dispose the shared engine so the next use picks up fresh settings."""

    global _database
    with _database_lock:
        if _database is not None:
            close_all_sessions()
            _database.engine.dispose()
        _database = None
