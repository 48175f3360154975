"""Engine and session helpers for the SQL-backed identity store."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from access_engine.errors import ConfigurationError
from access_engine.settings import Settings

from .models import Base


def _is_sqlite_memory_url(url: URL) -> bool:
    database = (url.database or "").strip()
    if database in {"", ":memory:"}:
        return True
    return database.startswith("file::memory:")


def build_engine(settings: Settings) -> Engine:
    """Create an engine for ``settings.database_url``.

    In-memory SQLite shares one connection so every session sees the same
    database. SQLite connections emit their own ``BEGIN`` so savepoints nest
    inside the session transaction.
    """

    if not settings.database_url:
        raise ConfigurationError("ACCESS_DATABASE_URL is required for the SQL identity store")
    url = make_url(settings.database_url)
    engine_kwargs: dict[str, Any] = {"echo": settings.database_echo}

    if url.get_backend_name() == "sqlite":
        engine_kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
        if _is_sqlite_memory_url(url):
            engine_kwargs["poolclass"] = StaticPool
    else:
        engine_kwargs["pool_pre_ping"] = True

    engine = create_engine(url, **engine_kwargs)
    if url.get_backend_name() == "sqlite":
        _enable_sqlite_savepoints(engine)
    return engine


def _enable_sqlite_savepoints(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(connection: Any) -> None:
        connection.exec_driver_sql("BEGIN")


def build_sessionmaker(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def create_schema(engine: Engine) -> list[str]:
    """Create any missing tables and return the names the schema defines."""

    Base.metadata.create_all(engine)
    return sorted(Base.metadata.tables)


@contextmanager
def session_scope(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    """Yield a session; commit when the block succeeds, roll back when it raises."""

    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


__all__ = ["build_engine", "build_sessionmaker", "create_schema", "session_scope"]
