"""FastAPI dependencies for database sessions and shared clients."""

from __future__ import annotations

from collections.abc import Generator

from fastapi import HTTPException, Request
from sqlalchemy.orm import Session

from wxreschedule.db.engine import SessionLocal
from wxreschedule.fetch.openweather import WeatherClient
from wxreschedule.messaging.queue import WorkQueue


def get_db() -> Generator[Session, None, None]:
    """Yield a SQLAlchemy session, committing on success or rolling back on error."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_weather_client(request: Request) -> WeatherClient:
    """Process-wide weather client created at startup. 503 if not configured."""
    client = getattr(request.app.state, "weather_client", None)
    if client is None:
        raise HTTPException(status_code=503, detail="Weather provider not configured")
    return client


def get_queue(request: Request) -> WorkQueue | None:
    """Conflict queue created at startup, or None when Redis is not configured."""
    return getattr(request.app.state, "queue", None)


def get_optional_weather_client(request: Request) -> WeatherClient | None:
    """Weather client for read-only reporting; None when not configured."""
    return getattr(request.app.state, "weather_client", None)
