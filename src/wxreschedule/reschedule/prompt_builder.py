"""Assemble the LLM context string for a held booking."""

from __future__ import annotations

from datetime import datetime, timedelta

from pydantic import BaseModel, Field

from wxreschedule.analysis.availability import describe_weekly_schedule, format_slot
from wxreschedule.models import Booking, InstructorAvailability, TrainingLevel


class SuggestionContext(BaseModel):
    """Everything the suggester needs to know about one conflict."""

    booking: Booking
    training_level: TrainingLevel
    violations: list[str] = Field(default_factory=list)
    availability: InstructorAvailability | None = None
    now: datetime


def search_window(now: datetime, days: int) -> tuple[datetime, datetime]:
    """[start of tomorrow, start of day ``now + days``]."""
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight + timedelta(days=1), midnight + timedelta(days=days)


def build_suggestion_context(
    ctx: SuggestionContext, max_suggestions: int, search_window_days: int
) -> str:
    """Build the user message for the suggester.

    Sections:
    1. Original booking and the violations that caused the hold
    2. Instructor availability (weekly schedule + upcoming exceptions)
    3. Task with the search window
    """
    b = ctx.booking
    sections: list[str] = []

    violations = ", ".join(ctx.violations) if ctx.violations else "unspecified"
    sections.append(
        "ORIGINAL BOOKING:\n"
        f"- Student Training Level: {ctx.training_level.value}\n"
        f"- Departure: {b.departure_location}\n"
        f"- Arrival: {b.arrival_location}\n"
        f"- Original Date/Time: {b.scheduled_start.isoformat()}\n"
        f"- Duration: {b.duration_minutes} minutes\n"
        f"- Weather Violations: {violations}"
    )

    avail_lines = ["INSTRUCTOR AVAILABILITY:", describe_weekly_schedule(ctx.availability)]
    if ctx.availability and ctx.availability.exceptions:
        avail_lines.append("Exceptions:")
        for exc in sorted(ctx.availability.exceptions, key=lambda e: e.day):
            if not exc.available:
                detail = f"unavailable ({exc.reason})" if exc.reason else "unavailable"
            elif exc.time_slots:
                detail = ", ".join(format_slot(s) for s in exc.time_slots)
            else:
                detail = "regular hours"
            avail_lines.append(f"- {exc.day.isoformat()}: {detail}")
    sections.append("\n".join(avail_lines))

    start, end = search_window(ctx.now, search_window_days)
    sections.append(
        "TASK:\n"
        f"Generate {max_suggestions} alternative date/time suggestions within the next "
        f"{search_window_days} days (between {start.isoformat()} and {end.isoformat()}). "
        f"Times are in the same timezone as the original booking."
    )

    return "\n\n".join(sections)
