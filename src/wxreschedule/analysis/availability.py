"""Instructor availability: weekly schedule plus dated exceptions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime

from wxreschedule.models import InstructorAvailability, TimeSlot

DAY_KEYS = ["MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN"]
DAY_NAMES = {
    "MON": "Monday",
    "TUE": "Tuesday",
    "WED": "Wednesday",
    "THU": "Thursday",
    "FRI": "Friday",
    "SAT": "Saturday",
    "SUN": "Sunday",
}


@dataclass
class AvailabilityResult:
    """Whether a window is bookable, with the reason when it is not."""

    available: bool
    reason: str | None = None


def day_key(d: date) -> str:
    """Schedule key (MON..SUN) for a date."""
    return DAY_KEYS[d.weekday()]


def to_minutes(hhmm: str) -> int:
    hours, minutes = hhmm.split(":")
    return int(hours) * 60 + int(minutes)


def format_time(hhmm: str) -> str:
    """"09:00" -> "9:00 AM"."""
    minutes = to_minutes(hhmm)
    hours, mins = divmod(minutes, 60)
    period = "PM" if 12 <= hours < 24 else "AM"
    display = hours % 12 or 12
    return f"{display}:{mins:02d} {period}"


def format_slot(slot: TimeSlot) -> str:
    return f"{format_time(slot.start)} - {format_time(slot.end)}"


def slots_for_date(
    day: date, availability: InstructorAvailability
) -> tuple[list[TimeSlot], str | None]:
    """Bookable slots on one date and, when there are none, why.

    A dated exception takes precedence over the weekly schedule. An
    exception marked available but without slots defers to the weekly
    schedule.
    """
    for exc in availability.exceptions:
        if exc.day != day:
            continue
        if not exc.available:
            return [], exc.reason or "Not available on this date"
        if exc.time_slots:
            return list(exc.time_slots), None
        break

    key = day_key(day)
    slots = availability.weekly_schedule.get(key, [])
    if not slots:
        return [], f"Not available on {DAY_NAMES[key]}s"
    return list(slots), None


def is_available_at(
    start: datetime,
    duration_minutes: int,
    availability: InstructorAvailability | None,
) -> AvailabilityResult:
    """Check that the whole lesson window fits inside one available slot.

    An instructor with no recorded availability is treated as available.
    Times are compared in the clock of ``start``; a lesson running past
    midnight never fits.
    """
    if availability is None:
        return AvailabilityResult(available=True)

    slots, reason = slots_for_date(start.date(), availability)
    if not slots:
        return AvailabilityResult(available=False, reason=reason)

    req_start = start.hour * 60 + start.minute
    req_end = req_start + duration_minutes
    for slot in slots:
        if req_start >= to_minutes(slot.start) and req_end <= to_minutes(slot.end):
            return AvailabilityResult(available=True)

    end_hhmm = f"{req_end // 60:02d}:{req_end % 60:02d}"
    return AvailabilityResult(
        available=False,
        reason=(
            f"Requested time {format_time(start.strftime('%H:%M'))} - "
            f"{format_time(end_hhmm)} does not fall within available hours"
        ),
    )


def describe_weekly_schedule(availability: InstructorAvailability | None) -> str:
    """Human-readable weekly schedule, one line per working day."""
    if availability is None:
        return "No availability set"
    lines = []
    for key in DAY_KEYS:
        slots = availability.weekly_schedule.get(key)
        if slots:
            lines.append(f"{DAY_NAMES[key]}: " + ", ".join(format_slot(s) for s in slots))
    return "\n".join(lines) if lines else "No availability set"
