"""Shared test fixtures."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import fakeredis
import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from wxreschedule.config import load_minimums
from wxreschedule.db.models import Base, BookingRow, UserRow
from wxreschedule.messaging.queue import WorkQueue
from wxreschedule.models import TrainingLevel, WeatherObservation

NOW = datetime(2026, 6, 1, 8, 0, tzinfo=timezone.utc)

# Monday-Friday 08:00-18:00, Saturday mornings
WEEKDAY_AVAILABILITY = {
    "weeklySchedule": {
        day: [{"start": "08:00", "end": "18:00"}] for day in ["MON", "TUE", "WED", "THU", "FRI"]
    }
    | {"SAT": [{"start": "08:00", "end": "12:00"}]},
    "exceptions": [],
}


@pytest.fixture
def db_engine():
    """In-memory SQLite engine for tests."""
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, _connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    """Yield a SQLAlchemy session per test, rolled back after."""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def minimums():
    return load_minimums()


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def queue(redis_client):
    return WorkQueue(redis_client, "test:conflicts", lease_seconds=60, max_receives=3)


@pytest.fixture
def clear_obs():
    """Observation that satisfies every training level."""
    return WeatherObservation(
        visibility_miles=10.0, ceiling_ft=25000, wind_kt=5.0, wind_gust_kt=None, phenomena=["Clear"]
    )


@pytest.fixture
def low_vis_obs():
    """Visibility 2 SM, otherwise fine."""
    return WeatherObservation(
        visibility_miles=2.0, ceiling_ft=5000, wind_kt=8.0, wind_gust_kt=None, phenomena=["Mist"]
    )


@pytest.fixture
def weekday_availability():
    return json.loads(json.dumps(WEEKDAY_AVAILABILITY))


@pytest.fixture
def seed_users():
    """Factory inserting one student and one instructor."""

    def _seed(session, training_level: str | None = TrainingLevel.STUDENT_PILOT.value,
              availability: dict | None = None) -> None:
        session.add(UserRow(
            id="student-1", email="student@example.com", name="Sam Student",
            role="STUDENT", training_level=training_level,
        ))
        session.add(UserRow(
            id="instructor-1", email="cfi@example.com", name="Ina Instructor",
            role="INSTRUCTOR",
            availability_json=json.dumps(availability) if availability is not None else None,
        ))
        session.flush()

    return _seed


@pytest.fixture
def add_booking():
    """Factory inserting a booking for the seeded student and instructor."""

    def _add(session, booking_id: str, start: datetime = NOW + timedelta(hours=6),
             status: str = "SCHEDULED", duration_minutes: int = 60,
             departure: str = "37.6213,-122.3790",
             arrival: str = "37.6213,-122.3790") -> BookingRow:
        row = BookingRow(
            id=booking_id,
            student_id="student-1",
            instructor_id="instructor-1",
            departure_location=departure,
            arrival_location=arrival,
            scheduled_start=start,
            scheduled_end=start + timedelta(minutes=duration_minutes),
            duration_minutes=duration_minutes,
            status=status,
        )
        session.add(row)
        session.flush()
        return row

    return _add
