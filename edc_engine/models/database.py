"""SQLAlchemy engine, session factory and declarative base."""

from datetime import datetime, timezone
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from edc_engine.config import get_settings


class Base(DeclarativeBase):
    """Declarative base shared by every EDC table."""
    pass


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def enable_sqlite_foreign_keys(engine: Engine) -> None:
    """Turn on foreign key enforcement for every SQLite connection."""

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(database_url: str) -> Engine:
    """Create an engine for the configured database.

    Pool sizing applies to server databases only. SQLite connections are
    shared with FastAPI's threadpool and enforce foreign keys, which the
    response, signature and audit tables rely on.
    """
    settings = get_settings()
    is_sqlite = database_url.startswith("sqlite")

    kwargs = {"pool_pre_ping": True, "echo": False}
    if is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs["pool_size"] = settings.database_pool_size
        kwargs["max_overflow"] = settings.database_max_overflow

    built = create_engine(database_url, **kwargs)
    if is_sqlite:
        enable_sqlite_foreign_keys(built)
    return built


engine = build_engine(get_settings().database_url)

# Responses are serialized after commit
SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a request-scoped session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
