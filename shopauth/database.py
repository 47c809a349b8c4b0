"""Engine and session factory for the shop database."""
from __future__ import annotations

from typing import Any, Iterator

from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker
from sqlmodel import Session, SQLModel, create_engine

from .config import settings


def _ensure_sqlite_directory(database_url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""

    try:
        url = make_url(database_url)
    except Exception:
        return

    if not url.drivername.startswith("sqlite"):
        return

    database = url.database
    if not database or database == ":memory:":
        return

    path = settings.resolve_data_path(database)
    path.parent.mkdir(parents=True, exist_ok=True)


def _build_engine(database_url: str):
    _ensure_sqlite_directory(database_url)
    connect_args: dict[str, Any] = {}
    if database_url.startswith("sqlite"):
        # sync FastAPI handlers run on the threadpool
        connect_args["check_same_thread"] = False
    return create_engine(database_url, connect_args=connect_args)


def _build_session_factory(bind) -> sessionmaker:
    return sessionmaker(
        bind=bind,
        class_=Session,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


engine = _build_engine(settings.DATABASE_URL)
SessionLocal = _build_session_factory(engine)


def reset_session_factory(database_url: str | None = None) -> None:
    """Point the engine and ``SessionLocal`` at ``database_url``.

    Tests and the management CLI use this to work against a scratch database.
    """

    global engine, SessionLocal

    if database_url is not None:
        settings.DATABASE_URL = database_url
    engine.dispose()
    engine = _build_engine(settings.DATABASE_URL)
    SessionLocal = _build_session_factory(engine)


def create_tables() -> None:
    # the table modules must be imported before metadata is complete
    from .auth import models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session() -> Iterator[Session]:
    """Yield a database session for FastAPI dependencies."""

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


__all__ = [
    "SessionLocal",
    "create_tables",
    "engine",
    "get_session",
    "reset_session_factory",
]
