"""Database engine shared by the monitor, the workers and the API."""

from __future__ import annotations

import logging
import os

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from wxreschedule.db.models import Base

logger = logging.getLogger(__name__)

SQLITE_BUSY_TIMEOUT_SECONDS = 30

_engine: Engine | None = None
SessionLocal: sessionmaker[Session] = sessionmaker()


def resolve_database_url() -> str:
    """Pick the database URL from the environment.

    ``DATABASE_URL`` wins when set. Production requires it; otherwise a
    SQLite file under ``DATA_DIR`` is used.
    """
    url = os.environ.get("DATABASE_URL")
    if url:
        return url
    if os.environ.get("ENVIRONMENT", "development") == "production":
        raise ValueError("DATABASE_URL environment variable must be set in production")

    data_dir = os.environ.get("DATA_DIR", "data")
    os.makedirs(data_dir, exist_ok=True)
    return f"sqlite:///{data_dir}/wxreschedule.db"


def _enable_sqlite_pragmas(engine: Engine) -> None:
    # WAL: the monitor and workers are separate processes reading while one writes
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, _connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def get_engine(db_url: str | None = None) -> Engine:
    """Return the process-wide engine, creating it on first use."""
    global _engine
    if _engine is not None:
        return _engine

    db_url = db_url or resolve_database_url()
    if db_url.startswith("sqlite"):
        _engine = create_engine(
            db_url,
            connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT_SECONDS},
        )
        _enable_sqlite_pragmas(_engine)
    else:
        # Workers idle between messages; stale pooled connections are replaced
        _engine = create_engine(db_url, pool_pre_ping=True)

    SessionLocal.configure(bind=_engine)
    logger.info("Database engine created: %s", db_url.split("@")[-1])
    return _engine


def reset_engine() -> None:
    """Drop the singleton (tests)."""
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = None
    SessionLocal.configure(bind=None)


def init_db(engine: Engine | None = None) -> None:
    """Create all tables. Dev only; deployed databases are migrated with Alembic."""
    engine = engine or get_engine()
    Base.metadata.create_all(engine)
    logger.info("Database tables created")
