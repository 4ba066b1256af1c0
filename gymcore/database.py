from __future__ import annotations

from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import get_settings


Base = declarative_base()


def build_engine(database_url: str) -> Engine:
    """Create an engine for the given URL.

    SQLite connections get foreign keys switched on so membership deletes
    cascade to payments, addons and trainer assignments at the database level
    as well as through the ORM relationships. An in-memory URL shares a single
    connection so every session sees the same schema.
    """
    kwargs: dict = {"future": True}
    connect_args: dict = {}
    if database_url.startswith("sqlite"):
        # Needed for SQLite when used with threads (FastAPI default)
        connect_args = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True

    built = create_engine(database_url, connect_args=connect_args, **kwargs)

    if database_url.startswith("sqlite"):

        @event.listens_for(built, "connect")
        def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return built


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(bind=bind, autoflush=False, autocommit=False, future=True, expire_on_commit=False)


engine = build_engine(get_settings().database_url)

SessionLocal = build_session_factory(engine)


def get_db_session() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
