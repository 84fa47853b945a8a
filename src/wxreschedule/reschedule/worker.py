"""Rescheduling worker: turn a held booking into validated alternative slots.

Delivery is at-least-once. Every message starts by re-reading the booking
and the final write is a check-and-set out of WEATHER_HOLD, so a duplicate
delivery finds the booking already moved on and does nothing.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from pydantic import ValidationError
from sqlalchemy.orm import Session

from wxreschedule.analysis.availability import is_available_at
from wxreschedule.fetch.openweather import WeatherClient
from wxreschedule.messaging.pubsub import NotificationPublisher
from wxreschedule.messaging.queue import WorkQueue
from wxreschedule.models import (
    Booking,
    BookingStatus,
    ConflictMessage,
    InstructorAvailability,
    RescheduleCandidate,
    RescheduleNotification,
    RescheduleSuggestion,
    TrainingLevel,
    WeatherMinimum,
)
from wxreschedule.monitor import assess_route
from wxreschedule.reschedule.llm_config import SuggesterConfig
from wxreschedule.reschedule.prompt_builder import SuggestionContext
from wxreschedule.reschedule.suggestions import generate_suggestions
from wxreschedule.storage.bookings import (
    load_booking,
    load_instructor_availability,
    persist_reschedule,
    run_in_transaction,
)

logger = logging.getLogger(__name__)


class ProcessOutcome(str, Enum):
    PROCESSED = "PROCESSED"
    SKIPPED = "SKIPPED"


@dataclass
class WorkerRunStats:
    """Counts from one ``RescheduleWorker.run`` call."""

    processed: int = 0
    skipped: int = 0
    failed: int = 0
    dead_lettered: int = 0

    @property
    def received(self) -> int:
        return self.processed + self.skipped + self.failed + self.dead_lettered


class RescheduleWorker:
    """Consumes conflict messages one at a time."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        queue: WorkQueue,
        config: SuggesterConfig,
        *,
        publisher: NotificationPublisher | None = None,
        weather_client: WeatherClient | None = None,
        minimums: dict[TrainingLevel, WeatherMinimum] | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.session_factory = session_factory
        self.queue = queue
        self.config = config
        self.publisher = publisher
        self.weather_client = weather_client
        self.minimums = minimums
        self._clock = clock

    # --- One message ---

    def process_message(self, message: ConflictMessage) -> ProcessOutcome:
        """Handle one conflict message.

        Raises on any failure before the database commit (missing booking,
        database error, ...); the caller leaves the message unacked.
        """
        session = self.session_factory()
        try:
            booking = load_booking(session, message.booking_id)
            availability = load_instructor_availability(session, booking.instructor_id)
        finally:
            session.close()

        if booking.status != BookingStatus.WEATHER_HOLD:
            logger.info(
                "Booking %s is %s, not WEATHER_HOLD; skipping",
                booking.id, booking.status.value,
            )
            return ProcessOutcome.SKIPPED

        now = self._clock()
        level = booking.training_level or message.training_level
        context = SuggestionContext(
            booking=booking,
            training_level=level,
            violations=message.violation_summary,
            availability=availability,
            now=now,
        )
        state = generate_suggestions(context, self.config)
        suggestions: list[RescheduleSuggestion] = state.get("suggestions", [])
        source = state.get("source", "heuristic")
        logger.info(
            "Booking %s: %d %s suggestion(s)", booking.id, len(suggestions), source
        )

        candidates = self.validate_suggestions(suggestions, booking, level, availability, now)
        if not candidates:
            logger.warning("Booking %s: no valid suggestions survived validation", booking.id)

        metadata = {
            "source": source,
            "model": self.config.llm.model if source == "llm" else None,
            "originalViolations": message.violation_summary,
        }
        persisted = run_in_transaction(
            self.session_factory,
            lambda s: persist_reschedule(s, booking, candidates, metadata),
        )
        if not persisted:
            logger.info("Booking %s left WEATHER_HOLD concurrently; nothing stored", booking.id)
            return ProcessOutcome.SKIPPED

        logger.info("Booking %s: stored %d candidate(s)", booking.id, len(candidates))
        self._publish(booking, len(candidates))
        return ProcessOutcome.PROCESSED

    def validate_suggestions(
        self,
        suggestions: list[RescheduleSuggestion],
        booking: Booking,
        level: TrainingLevel,
        availability: InstructorAvailability | None,
        now: datetime,
    ) -> list[RescheduleCandidate]:
        """Drop low-confidence, past and instructor-unavailable slots; flag weather."""
        candidates: list[RescheduleCandidate] = []
        for s in suggestions:
            if s.confidence < self.config.min_confidence:
                logger.debug("Dropping low-confidence suggestion %.2f", s.confidence)
                continue
            if s.date_time <= now:
                logger.debug("Dropping past suggestion %s", s.date_time.isoformat())
                continue

            check = is_available_at(s.date_time, booking.duration_minutes, availability)
            if not check.available:
                logger.debug(
                    "Instructor unavailable at %s: %s", s.date_time.isoformat(), check.reason
                )
                continue

            candidates.append(RescheduleCandidate(
                booking_id=booking.id,
                proposed_datetime=s.date_time,
                reasoning=s.reasoning,
                confidence=s.confidence,
                weather_safe=self._weather_safe_at(booking, level, s.date_time),
                instructor_available=True,
            ))
        return candidates

    def _weather_safe_at(self, booking: Booking, level: TrainingLevel, when: datetime) -> bool:
        """Fresh route evaluation at a candidate time; unknown counts as safe."""
        if self.weather_client is None:
            return True
        try:
            route = assess_route(
                booking.departure_location,
                booking.arrival_location,
                when,
                booking.duration_minutes,
                level,
                self.weather_client,
                minimums=self.minimums,
                booking_id=booking.id,
            )
        except Exception:
            logger.warning(
                "Booking %s: weather re-check at %s failed, assuming safe",
                booking.id, when.isoformat(), exc_info=True,
            )
            return True
        return route.safe

    def _publish(self, booking: Booking, count: int) -> None:
        if self.publisher is None:
            logger.debug("No publisher configured, skipping notification event")
            return
        notification = RescheduleNotification(
            booking_id=booking.id,
            student_id=booking.student_id,
            instructor_id=booking.instructor_id,
            original_datetime=booking.scheduled_start,
            suggestions_count=count,
            triggered_at=self._clock(),
        )
        try:
            self.publisher.publish(notification)
        except Exception:
            logger.warning(
                "Booking %s: notification publish failed", booking.id, exc_info=True
            )

    # --- Queue loop ---

    def run(
        self,
        max_messages: int | None = None,
        *,
        stop_when_empty: bool = True,
        poll_interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> WorkerRunStats:
        """Receive and process messages until the queue is empty or ``max_messages``.

        A failed message is not acked: it stays leased and comes back after
        its lease expires. Payloads that do not parse are dead-lettered.
        """
        stats = WorkerRunStats()
        while max_messages is None or stats.received < max_messages:
            self.queue.requeue_expired()
            message = self.queue.receive()
            if message is None:
                if stop_when_empty:
                    break
                sleep(poll_interval)
                continue

            try:
                conflict = ConflictMessage.model_validate_json(message.body)
            except ValidationError:
                logger.error("Message %s: malformed payload", message.id, exc_info=True)
                self.queue.dead_letter(message)
                stats.dead_lettered += 1
                continue

            try:
                outcome = self.process_message(conflict)
            except Exception:
                logger.error(
                    "Message %s failed (receive %d), leaving for redelivery",
                    message.id, message.receive_count, exc_info=True,
                )
                stats.failed += 1
                continue

            self.queue.ack(message)
            if outcome == ProcessOutcome.PROCESSED:
                stats.processed += 1
            else:
                stats.skipped += 1

        logger.info(
            "Worker run: %d processed, %d skipped, %d failed, %d dead-lettered",
            stats.processed, stats.skipped, stats.failed, stats.dead_lettered,
        )
        return stats
