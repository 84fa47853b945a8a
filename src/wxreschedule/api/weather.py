"""Manual weather check endpoints."""

from __future__ import annotations

import json
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from wxreschedule.analysis.evaluation import get_violation_reasons
from wxreschedule.db.deps import get_db, get_queue, get_weather_client
from wxreschedule.fetch.openweather import (
    RateLimitedError,
    WeatherClient,
    WeatherClientError,
)
from wxreschedule.messaging.queue import WorkQueue
from wxreschedule.models import (
    RouteEvaluation,
    TrainingLevel,
    WaypointEvaluation,
    WeatherStatus,
)
from wxreschedule.monitor import assess_route, build_conflict_message, record_check
from wxreschedule.storage.bookings import latest_weather_check, load_booking

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/weather", tags=["weather"])


# --- Request/response models ---


class RouteCheckRequest(BaseModel):
    departure_location: str
    arrival_location: str
    start_time: datetime
    duration_minutes: int = Field(gt=0)
    training_level: TrainingLevel


class RouteCheckResponse(BaseModel):
    overall_status: WeatherStatus
    safe: bool
    violation_summary: list[str]
    violation_reasons: list[str]
    waypoints: list[WaypointEvaluation]


class BookingCheckResponse(BaseModel):
    booking_id: str
    overall_status: WeatherStatus
    held: bool
    violation_summary: list[str]
    violation_reasons: list[str]


class LatestCheckResponse(BaseModel):
    booking_id: str
    checked_at: datetime
    overall_status: WeatherStatus
    violation_summary: list[str]
    violation_reasons: list[str]


# --- Helpers ---


def _assess_or_http_error(client: WeatherClient, **kwargs) -> RouteEvaluation:
    """Run a route assessment, mapping failures to HTTP errors."""
    try:
        return assess_route(client=client, **kwargs)
    except ValueError as exc:
        # Includes UnsupportedLocationError
        raise HTTPException(status_code=400, detail=str(exc))
    except RateLimitedError as exc:
        raise HTTPException(
            status_code=429,
            detail=str(exc),
            headers={"Retry-After": str(max(1, round(exc.retry_after)))},
        )
    except WeatherClientError as exc:
        logger.warning("Weather provider error: %s", exc, exc_info=True)
        raise HTTPException(status_code=502, detail=f"Weather provider error: {exc}")


# --- Endpoints ---


@router.post("/check-route", response_model=RouteCheckResponse)
def check_route(
    req: RouteCheckRequest,
    client: WeatherClient = Depends(get_weather_client),
):
    """Evaluate an ad-hoc route without touching any booking."""
    route = _assess_or_http_error(
        client,
        departure_location=req.departure_location,
        arrival_location=req.arrival_location,
        start=req.start_time,
        duration_minutes=req.duration_minutes,
        level=req.training_level,
    )
    return RouteCheckResponse(
        overall_status=route.overall_status,
        safe=route.safe,
        violation_summary=route.violation_summary,
        violation_reasons=get_violation_reasons(route),
        waypoints=route.waypoints,
    )


@router.post("/bookings/{booking_id}/check", response_model=BookingCheckResponse)
def check_booking(
    booking_id: str,
    db: Session = Depends(get_db),
    client: WeatherClient = Depends(get_weather_client),
    queue: WorkQueue | None = Depends(get_queue),
):
    """Check one booking now: store the result and hold the booking if unsafe.

    A newly held booking is enqueued for rescheduling like a monitor conflict.
    """
    try:
        booking = load_booking(db, booking_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Booking not found")

    if booking.training_level is None:
        raise HTTPException(status_code=422, detail="Student has no training level")

    route = _assess_or_http_error(
        client,
        departure_location=booking.departure_location,
        arrival_location=booking.arrival_location,
        start=booking.scheduled_start,
        duration_minutes=booking.duration_minutes,
        level=booking.training_level,
        booking_id=booking.id,
    )
    held = record_check(db, booking, route)
    # The worker re-reads the booking, so the hold must be visible first
    db.commit()

    if held:
        if queue is not None:
            queue.enqueue(build_conflict_message(booking, route, route.timestamp).model_dump_json())
        else:
            logger.warning("Booking %s held but no queue configured", booking.id)

    return BookingCheckResponse(
        booking_id=booking.id,
        overall_status=route.overall_status,
        held=held,
        violation_summary=route.violation_summary,
        violation_reasons=get_violation_reasons(route),
    )


@router.get("/bookings/{booking_id}/checks/latest", response_model=LatestCheckResponse)
def get_latest_check(booking_id: str, db: Session = Depends(get_db)):
    """Most recent stored weather check for a booking."""
    row = latest_weather_check(db, booking_id)
    if row is None:
        raise HTTPException(status_code=404, detail="No weather check recorded for booking")
    return LatestCheckResponse(
        booking_id=row.booking_id,
        checked_at=row.checked_at,
        overall_status=WeatherStatus(row.overall_status),
        violation_summary=json.loads(row.violation_summary_json),
        violation_reasons=json.loads(row.violation_reasons_json),
    )
