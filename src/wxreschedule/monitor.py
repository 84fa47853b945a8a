"""Weather monitor job: scan upcoming bookings and hold the unsafe ones.

Each run is independent: the only state is the booking status in the
database. A booking that was held in an earlier run no longer matches the
SCHEDULED filter, so re-running is harmless.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy.orm import Session

from wxreschedule.analysis.evaluation import evaluate_route, get_violation_reasons
from wxreschedule.config import DEFAULT_LOOKAHEAD_HOURS
from wxreschedule.fetch.openweather import WeatherClient
from wxreschedule.fetch.waypoints import calculate_waypoints
from wxreschedule.messaging.queue import WorkQueue
from wxreschedule.models import (
    Booking,
    BookingCheckResult,
    BookingStatus,
    ConflictMessage,
    MonitorRunSummary,
    RouteEvaluation,
    TrainingLevel,
    WeatherMinimum,
    WeatherStatus,
)
from wxreschedule.storage.bookings import (
    list_upcoming_scheduled,
    run_in_transaction,
    save_weather_check,
    transition_status,
)

logger = logging.getLogger(__name__)


def assess_route(
    departure_location: str,
    arrival_location: str,
    start: datetime,
    duration_minutes: float,
    level: TrainingLevel,
    client: WeatherClient,
    minimums: dict[TrainingLevel, WeatherMinimum] | None = None,
    booking_id: str | None = None,
) -> RouteEvaluation:
    """Waypoints -> observations -> verdict for one planned flight.

    Raises whatever the waypoint generator or weather client raises; a
    failed fetch fails the whole route.
    """
    waypoints = calculate_waypoints(departure_location, arrival_location, start, duration_minutes)
    observations = client.get_observations(waypoints)
    return evaluate_route(
        zip(waypoints, observations), level, minimums=minimums, booking_id=booking_id
    )


def build_conflict_message(
    booking: Booking, route: RouteEvaluation, checked_at: datetime
) -> ConflictMessage:
    return ConflictMessage(
        booking_id=booking.id,
        student_id=booking.student_id,
        instructor_id=booking.instructor_id,
        scheduled_start=booking.scheduled_start,
        scheduled_end=booking.scheduled_end,
        departure_location=booking.departure_location,
        arrival_location=booking.arrival_location,
        training_level=booking.training_level,
        violation_summary=route.violation_summary,
        overall_status=route.overall_status,
        checked_at=checked_at,
    )


def record_check(session: Session, booking: Booking, route: RouteEvaluation) -> bool:
    """Persist the check and, when not safe, hold the booking.

    Returns True if this call moved the booking to WEATHER_HOLD.
    """
    save_weather_check(session, booking.id, route, get_violation_reasons(route))
    if route.overall_status == WeatherStatus.SAFE:
        return False
    return transition_status(
        session, booking.id, BookingStatus.SCHEDULED, BookingStatus.WEATHER_HOLD
    )


class WeatherMonitor:
    """Scans SCHEDULED bookings in the look-ahead window, one at a time."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        client: WeatherClient,
        queue: WorkQueue,
        *,
        minimums: dict[TrainingLevel, WeatherMinimum] | None = None,
        lookahead: timedelta = timedelta(hours=DEFAULT_LOOKAHEAD_HOURS),
    ):
        self.session_factory = session_factory
        self.client = client
        self.queue = queue
        self.minimums = minimums
        self.lookahead = lookahead

    def run(self, now: datetime | None = None) -> MonitorRunSummary:
        """Check every booking in the window. Never raises for a single booking."""
        now = now or datetime.now(timezone.utc)
        summary = MonitorRunSummary(started_at=now)

        session = self.session_factory()
        try:
            bookings = list_upcoming_scheduled(session, now, self.lookahead)
        finally:
            session.close()

        summary.total_bookings = len(bookings)
        logger.info(
            "Monitor run: %d scheduled booking(s) in the next %s",
            len(bookings), self.lookahead,
        )

        for booking in bookings:
            if booking.training_level is None:
                logger.warning(
                    "Booking %s: student %s has no training level, skipping",
                    booking.id, booking.student_id,
                )
                summary.skipped += 1
                continue

            try:
                result = self._check_booking(booking)
            except Exception:
                logger.error("Booking %s: weather check failed", booking.id, exc_info=True)
                summary.failed += 1
                continue

            summary.results.append(result)
            if result.has_conflict:
                summary.conflicts += 1
            elif result.overall_status == WeatherStatus.SAFE:
                summary.safe += 1

        summary.finished_at = datetime.now(timezone.utc)
        logger.info(
            "Monitor run done: %d total, %d conflict(s), %d safe, %d skipped, %d failed",
            summary.total_bookings, summary.conflicts, summary.safe,
            summary.skipped, summary.failed,
        )
        return summary

    def _check_booking(self, booking: Booking) -> BookingCheckResult:
        route = assess_route(
            booking.departure_location,
            booking.arrival_location,
            booking.scheduled_start,
            booking.duration_minutes,
            booking.training_level,
            self.client,
            minimums=self.minimums,
            booking_id=booking.id,
        )
        reasons = get_violation_reasons(route)

        held = run_in_transaction(self.session_factory, lambda s: record_check(s, booking, route))

        if held:
            message = build_conflict_message(booking, route, route.timestamp)
            self.queue.enqueue(message.model_dump_json())
            logger.info(
                "Booking %s held (%s): %s",
                booking.id, route.overall_status.value, "; ".join(route.violation_summary),
            )
        elif route.overall_status != WeatherStatus.SAFE:
            logger.info("Booking %s already moved on, not enqueued", booking.id)

        return BookingCheckResult(
            booking_id=booking.id,
            has_conflict=held,
            overall_status=route.overall_status,
            violation_reasons=reasons,
        )
