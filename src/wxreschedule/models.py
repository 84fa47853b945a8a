"""Pydantic v2 models for wxreschedule."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TrainingLevel(str, Enum):
    """Student certification tier, selects which weather minimums apply."""

    STUDENT_PILOT = "STUDENT_PILOT"
    PRIVATE_PILOT = "PRIVATE_PILOT"
    INSTRUMENT_RATED = "INSTRUMENT_RATED"


class BookingStatus(str, Enum):
    """Booking lifecycle states."""

    SCHEDULED = "SCHEDULED"
    WEATHER_HOLD = "WEATHER_HOLD"
    AWAITING_RESPONSE = "AWAITING_RESPONSE"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class WeatherStatus(str, Enum):
    """Route-level verdict."""

    SAFE = "SAFE"
    MARGINAL = "MARGINAL"
    UNSAFE = "UNSAFE"


class ViolationKind(str, Enum):
    """Dimension of a weather minimum that was breached."""

    VISIBILITY = "VISIBILITY"
    CEILING = "CEILING"
    WIND_SPEED = "WIND_SPEED"
    WIND_GUST = "WIND_GUST"
    PROHIBITED_CONDITION = "PROHIBITED_CONDITION"


# --- Route & weather ---


class Waypoint(BaseModel):
    """A sampled point in space and time along a planned flight."""

    model_config = ConfigDict(frozen=True)

    lat: float
    lon: float
    timestamp: datetime


class WeatherObservation(BaseModel):
    """Point weather in canonical units (statute miles, feet, knots)."""

    model_config = ConfigDict(frozen=True)

    visibility_miles: float
    ceiling_ft: float
    wind_kt: float
    wind_gust_kt: Optional[float] = None
    phenomena: list[str] = Field(default_factory=list)


class WeatherMinimum(BaseModel):
    """Safety minimums for one training level."""

    model_config = ConfigDict(frozen=True)

    visibility_miles: float
    ceiling_ft: float
    wind_kt: float
    wind_gust_kt: float
    prohibited_phenomena: list[str] = Field(default_factory=list)
    description: str = ""


class Violation(BaseModel):
    """One breached minimum at one waypoint."""

    model_config = ConfigDict(frozen=True)

    kind: ViolationKind
    reason: str
    actual: Union[float, str]
    required: Union[float, str]


class WaypointEvaluation(BaseModel):
    """Evaluation of one waypoint's observation against a minimum."""

    model_config = ConfigDict(frozen=True)

    waypoint: Waypoint
    observation: WeatherObservation
    safe: bool
    violations: list[Violation] = Field(default_factory=list)


class RouteEvaluation(BaseModel):
    """Verdict over all waypoints of a route."""

    booking_id: Optional[str] = None
    timestamp: datetime
    waypoints: list[WaypointEvaluation] = Field(default_factory=list)
    overall_status: WeatherStatus
    violation_summary: list[str] = Field(default_factory=list)

    @property
    def safe(self) -> bool:
        return self.overall_status == WeatherStatus.SAFE

    @property
    def unsafe_count(self) -> int:
        return sum(1 for wp in self.waypoints if not wp.safe)


# --- Instructor availability ---


class TimeSlot(BaseModel):
    """A daily window in HH:MM (24h, local to the schedule)."""

    start: str
    end: str

    @field_validator("start", "end")
    @classmethod
    def _validate_hhmm(cls, v: str) -> str:
        parts = v.split(":")
        if len(parts) != 2 or not all(p.isdigit() and len(p) == 2 for p in parts):
            raise ValueError(f"Time must be HH:MM, got {v!r}")
        hours, minutes = int(parts[0]), int(parts[1])
        if hours > 24 or minutes > 59 or (hours == 24 and minutes != 0):
            raise ValueError(f"Time out of range: {v!r}")
        return v


class AvailabilityException(BaseModel):
    """Date-specific override of the weekly schedule."""

    day: date = Field(alias="date")
    available: bool
    time_slots: list[TimeSlot] = Field(default_factory=list, alias="timeSlots")
    reason: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class InstructorAvailability(BaseModel):
    """Weekly schedule keyed by MON..SUN plus dated exceptions."""

    weekly_schedule: dict[str, list[TimeSlot]] = Field(
        default_factory=dict, alias="weeklySchedule"
    )
    exceptions: list[AvailabilityException] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


# --- Bookings & rescheduling ---


class Booking(BaseModel):
    """The slice of a booking the pipeline reads."""

    id: str
    student_id: str
    instructor_id: str
    student_name: str = ""
    departure_location: str
    arrival_location: str
    scheduled_start: datetime
    scheduled_end: datetime
    duration_minutes: int
    status: BookingStatus
    training_level: Optional[TrainingLevel] = None


class ConflictMessage(BaseModel):
    """Queue payload handed from the monitor to the rescheduling worker."""

    booking_id: str
    student_id: str
    instructor_id: str
    scheduled_start: datetime
    scheduled_end: datetime
    departure_location: str
    arrival_location: str
    training_level: TrainingLevel
    violation_summary: list[str] = Field(default_factory=list)
    overall_status: WeatherStatus
    checked_at: datetime


class RescheduleSuggestion(BaseModel):
    """A candidate time proposed by the LLM or the heuristic fallback."""

    date_time: datetime
    reasoning: str
    confidence: float = Field(ge=0.0, le=1.0)
    source: str = "llm"


class RescheduleCandidate(BaseModel):
    """A validated alternative slot offered to the student."""

    booking_id: str
    proposed_datetime: datetime
    reasoning: str
    confidence: float = Field(ge=0.0, le=1.0)
    weather_safe: bool
    instructor_available: bool


class RescheduleNotification(BaseModel):
    """Outbound pub/sub event once candidates are ready."""

    booking_id: str
    student_id: str
    instructor_id: str
    original_datetime: datetime
    suggestions_count: int
    triggered_at: datetime
    event_type: str = "RESCHEDULE_SUGGESTIONS"


# --- Monitor output ---


class BookingCheckResult(BaseModel):
    """Per-booking outcome of one monitor run."""

    booking_id: str
    has_conflict: bool
    overall_status: WeatherStatus
    violation_reasons: list[str] = Field(default_factory=list)


class MonitorRunSummary(BaseModel):
    """Run summary exposed for observability."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    total_bookings: int = 0
    conflicts: int = 0
    safe: int = 0
    skipped: int = 0
    failed: int = 0
    results: list[BookingCheckResult] = Field(default_factory=list)
