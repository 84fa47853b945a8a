"""Database package: SQLAlchemy models and engine."""

from wxreschedule.db.engine import SessionLocal, get_engine, init_db
from wxreschedule.db.models import Base

__all__ = ["Base", "SessionLocal", "get_engine", "init_db"]
