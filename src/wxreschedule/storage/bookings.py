"""Booking store: reads, guarded status transitions and reschedule persistence."""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, TypeVar

from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from wxreschedule.db.models import (
    BookingRow,
    NotificationRow,
    RescheduleCandidateRow,
    UserRow,
    WeatherCheckRow,
)
from wxreschedule.models import (
    Booking,
    BookingStatus,
    InstructorAvailability,
    RescheduleCandidate,
    RouteEvaluation,
    TrainingLevel,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_ATTEMPTS = 3
BACKOFF_BASE_SECONDS = 0.5

NOTIFICATION_TYPE = "RESCHEDULE_SUGGESTION"
NOTIFICATION_CHANNEL = "IN_APP"


def as_utc(dt: datetime) -> datetime:
    """SQLite drops tzinfo on read; treat naive values as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# --- Conversion helpers ---


def _row_to_booking(row: BookingRow) -> Booking:
    level = row.student.training_level if row.student else None
    return Booking(
        id=row.id,
        student_id=row.student_id,
        instructor_id=row.instructor_id,
        student_name=row.student.name if row.student else "",
        departure_location=row.departure_location,
        arrival_location=row.arrival_location,
        scheduled_start=as_utc(row.scheduled_start),
        scheduled_end=as_utc(row.scheduled_end),
        duration_minutes=row.duration_minutes,
        status=BookingStatus(row.status),
        training_level=TrainingLevel(level) if level else None,
    )


# --- Reads ---


def load_booking(session: Session, booking_id: str) -> Booking:
    """Load a booking by ID. Raises KeyError if not found."""
    row = session.get(BookingRow, booking_id)
    if row is None:
        raise KeyError(f"Booking not found: {booking_id}")
    return _row_to_booking(row)


def list_upcoming_scheduled(
    session: Session, now: datetime, lookahead: timedelta
) -> list[Booking]:
    """SCHEDULED bookings starting within [now, now + lookahead], earliest first."""
    stmt = (
        select(BookingRow)
        .where(
            BookingRow.status == BookingStatus.SCHEDULED.value,
            BookingRow.scheduled_start >= now,
            BookingRow.scheduled_start <= now + lookahead,
        )
        .order_by(BookingRow.scheduled_start)
    )
    rows = session.execute(stmt).scalars().all()
    return [_row_to_booking(r) for r in rows]


def load_instructor_availability(
    session: Session, instructor_id: str
) -> InstructorAvailability | None:
    """Parsed availability for an instructor, or None when not recorded."""
    row = session.get(UserRow, instructor_id)
    if row is None or not row.availability_json:
        return None
    return InstructorAvailability.model_validate(json.loads(row.availability_json))


def count_stale_holds(session: Session, older_than: datetime) -> int:
    """Bookings left in WEATHER_HOLD since before ``older_than``."""
    stmt = select(func.count()).select_from(BookingRow).where(
        BookingRow.status == BookingStatus.WEATHER_HOLD.value,
        BookingRow.updated_at < older_than,
    )
    return session.execute(stmt).scalar_one()


# --- Writes ---


def transition_status(
    session: Session,
    booking_id: str,
    expected: BookingStatus,
    new: BookingStatus,
) -> bool:
    """Move a booking from ``expected`` to ``new`` in one conditional UPDATE.

    Returns False when the booking is no longer in ``expected`` (or does
    not exist); the caller treats that as a no-op.
    """
    stmt = (
        update(BookingRow)
        .where(BookingRow.id == booking_id, BookingRow.status == expected.value)
        .values(status=new.value, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    session.expire_all()
    return result.rowcount == 1


def save_weather_check(session: Session, booking_id: str, route: RouteEvaluation,
                       reasons: list[str]) -> int:
    """Append a weather check record. Returns its ID."""
    row = WeatherCheckRow(
        booking_id=booking_id,
        checked_at=route.timestamp,
        overall_status=route.overall_status.value,
        waypoint_data_json=json.dumps(
            [wp.model_dump(mode="json") for wp in route.waypoints]
        ),
        violation_summary_json=json.dumps(route.violation_summary),
        violation_reasons_json=json.dumps(reasons),
    )
    session.add(row)
    session.flush()
    return row.id


def latest_weather_check(session: Session, booking_id: str) -> WeatherCheckRow | None:
    stmt = (
        select(WeatherCheckRow)
        .where(WeatherCheckRow.booking_id == booking_id)
        .order_by(WeatherCheckRow.checked_at.desc(), WeatherCheckRow.id.desc())
        .limit(1)
    )
    return session.execute(stmt).scalar_one_or_none()


def persist_reschedule(
    session: Session,
    booking: Booking,
    candidates: list[RescheduleCandidate],
    metadata: dict | None = None,
) -> bool:
    """Store candidates, move the booking to AWAITING_RESPONSE and notify both parties.

    Must run inside a single transaction. Returns False, writing nothing,
    when the booking has already left WEATHER_HOLD.
    """
    moved = transition_status(
        session, booking.id, BookingStatus.WEATHER_HOLD, BookingStatus.AWAITING_RESPONSE
    )
    if not moved:
        return False

    now = datetime.now(timezone.utc)
    for c in candidates:
        session.add(RescheduleCandidateRow(
            booking_id=booking.id,
            proposed_datetime=c.proposed_datetime,
            reasoning=c.reasoning,
            confidence=c.confidence,
            weather_safe=c.weather_safe,
            instructor_available=c.instructor_available,
            metadata_json=json.dumps({**(metadata or {}), "generatedAt": now.isoformat()}),
        ))

    count = len(candidates)
    original = booking.scheduled_start.strftime("%Y-%m-%d %H:%M UTC")
    session.add(NotificationRow(
        user_id=booking.student_id,
        booking_id=booking.id,
        type=NOTIFICATION_TYPE,
        channel=NOTIFICATION_CHANNEL,
        title="Reschedule Suggestions Available",
        message=(
            f"We've generated {count} alternative time slots for your flight lesson. "
            "Please review and select your preferred option."
        ),
    ))
    session.add(NotificationRow(
        user_id=booking.instructor_id,
        booking_id=booking.id,
        type=NOTIFICATION_TYPE,
        channel=NOTIFICATION_CHANNEL,
        title="Reschedule Suggestions Sent",
        message=(
            f"{count} reschedule suggestions have been sent to "
            f"{booking.student_name or booking.student_id} for the lesson originally "
            f"scheduled on {original}."
        ),
    ))
    session.flush()
    return True


def list_candidates(session: Session, booking_id: str) -> list[RescheduleCandidateRow]:
    stmt = (
        select(RescheduleCandidateRow)
        .where(RescheduleCandidateRow.booking_id == booking_id)
        .order_by(RescheduleCandidateRow.proposed_datetime)
    )
    return list(session.execute(stmt).scalars().all())


# --- Transactions ---


def run_in_transaction(
    session_factory: sessionmaker[Session] | Callable[[], Session],
    work: Callable[[Session], T],
    *,
    max_attempts: int = MAX_ATTEMPTS,
    backoff_base: float = BACKOFF_BASE_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``work`` in its own session and commit, retrying transient DB errors.

    Each attempt uses a fresh session. Only ``OperationalError`` (locks,
    dropped connections) is retried, with delay ``backoff_base * 2**n``;
    anything else rolls back and propagates immediately.
    """
    attempt = 0
    while True:
        attempt += 1
        session = session_factory()
        try:
            result = work(session)
            session.commit()
            return result
        except OperationalError:
            session.rollback()
            if attempt >= max_attempts:
                logger.error("Transaction failed after %d attempts", attempt, exc_info=True)
                raise
            delay = backoff_base * (2 ** (attempt - 1))
            logger.warning(
                "Transient database error (attempt %d/%d), retrying in %.2fs",
                attempt, max_attempts, delay, exc_info=True,
            )
            sleep(delay)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
