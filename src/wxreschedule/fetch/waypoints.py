"""Waypoint generation: sample a lesson's flight path in space and time.

Cross-country lessons follow the great-circle arc between departure and
arrival. Pattern work (departure and arrival at the same field) is sampled
on a circle around the airfield instead.
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timedelta

from wxreschedule.models import Waypoint

EARTH_RADIUS_NM = 3440.065
WAYPOINT_INTERVAL_MINUTES = 30
LOCAL_FLIGHT_THRESHOLD_NM = 5.0
LOCAL_FLIGHT_RADIUS_NM = 25.0

_COORD_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*,\s*(-?\d+(?:\.\d+)?)\s*$")


class UnsupportedLocationError(ValueError):
    """Location is not a decimal "lat,lon" pair."""


def haversine_nm(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in nautical miles."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlam = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlam / 2) ** 2
    return EARTH_RADIUS_NM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def intermediate_point(
    lat1: float, lon1: float, lat2: float, lon2: float, fraction: float
) -> tuple[float, float]:
    """Point at ``fraction`` (0..1) of the way along the great circle.

    Spherical linear interpolation on unit vectors, so the result stays on
    the arc rather than on the straight lat/lon line.
    """
    delta = haversine_nm(lat1, lon1, lat2, lon2) / EARTH_RADIUS_NM
    if delta == 0:
        return lat1, lon1

    phi1, lam1 = math.radians(lat1), math.radians(lon1)
    phi2, lam2 = math.radians(lat2), math.radians(lon2)

    a = math.sin((1 - fraction) * delta) / math.sin(delta)
    b = math.sin(fraction * delta) / math.sin(delta)

    x = a * math.cos(phi1) * math.cos(lam1) + b * math.cos(phi2) * math.cos(lam2)
    y = a * math.cos(phi1) * math.sin(lam1) + b * math.cos(phi2) * math.sin(lam2)
    z = a * math.sin(phi1) + b * math.sin(phi2)

    phi3 = math.atan2(z, math.sqrt(x * x + y * y))
    lam3 = math.atan2(y, x)
    return math.degrees(phi3), math.degrees(lam3)


def destination_point(
    lat: float, lon: float, bearing_deg: float, distance_nm: float
) -> tuple[float, float]:
    """Point reached from (lat, lon) after ``distance_nm`` on an initial bearing."""
    phi1 = math.radians(lat)
    lam1 = math.radians(lon)
    theta = math.radians(bearing_deg)
    delta = distance_nm / EARTH_RADIUS_NM

    phi2 = math.asin(
        math.sin(phi1) * math.cos(delta)
        + math.cos(phi1) * math.sin(delta) * math.cos(theta)
    )
    lam2 = lam1 + math.atan2(
        math.sin(theta) * math.sin(delta) * math.cos(phi1),
        math.cos(delta) - math.sin(phi1) * math.sin(phi2),
    )
    # Normalise longitude to [-180, 180)
    lon2 = (math.degrees(lam2) + 540) % 360 - 180
    return math.degrees(phi2), lon2


def parse_location(location: str) -> tuple[float, float]:
    """Parse a decimal ``"lat,lon"`` string.

    Raises:
        UnsupportedLocationError: for airport identifiers or anything else
            that would need an external lookup, and for out-of-range values.
    """
    match = _COORD_RE.match(location)
    if match:
        lat, lon = float(match.group(1)), float(match.group(2))
        if -90 <= lat <= 90 and -180 <= lon <= 180:
            return lat, lon
    raise UnsupportedLocationError(
        f"Unsupported location format: {location!r} (expected decimal 'lat,lon')"
    )


def _sample_offsets(duration_minutes: float) -> list[float]:
    """Elapsed minutes for each sample: every interval, then the exact end."""
    offsets = [0.0]
    elapsed = float(WAYPOINT_INTERVAL_MINUTES)
    while elapsed < duration_minutes:
        offsets.append(elapsed)
        elapsed += WAYPOINT_INTERVAL_MINUTES
    offsets.append(float(duration_minutes))
    return offsets


def generate_local_waypoints(
    center: tuple[float, float],
    start_time: datetime,
    duration_minutes: float,
    radius_nm: float = LOCAL_FLIGHT_RADIUS_NM,
) -> list[Waypoint]:
    """Sample a circular local-area flight around ``center``.

    Bearing advances in proportion to elapsed time, so the final sample
    closes the circle where the first one started.
    """
    lat, lon = center
    points: list[Waypoint] = []
    for elapsed in _sample_offsets(duration_minutes):
        bearing = 360.0 * elapsed / duration_minutes
        p_lat, p_lon = destination_point(lat, lon, bearing, radius_nm)
        points.append(
            Waypoint(
                lat=p_lat,
                lon=p_lon,
                timestamp=start_time + timedelta(minutes=elapsed),
            )
        )
    return points


def generate_great_circle_waypoints(
    departure: tuple[float, float],
    arrival: tuple[float, float],
    start_time: datetime,
    duration_minutes: float,
) -> list[Waypoint]:
    """Sample the great-circle route, one point per interval plus both ends."""
    dep_lat, dep_lon = departure
    arr_lat, arr_lon = arrival
    offsets = _sample_offsets(duration_minutes)

    points = [Waypoint(lat=dep_lat, lon=dep_lon, timestamp=start_time)]
    for elapsed in offsets[1:-1]:
        lat, lon = intermediate_point(
            dep_lat, dep_lon, arr_lat, arr_lon, elapsed / duration_minutes
        )
        points.append(
            Waypoint(lat=lat, lon=lon, timestamp=start_time + timedelta(minutes=elapsed))
        )
    points.append(
        Waypoint(
            lat=arr_lat,
            lon=arr_lon,
            timestamp=start_time + timedelta(minutes=duration_minutes),
        )
    )
    return points


def generate_waypoints(
    departure: tuple[float, float],
    arrival: tuple[float, float],
    start_time: datetime,
    duration_minutes: float,
) -> list[Waypoint]:
    """Generate time-stamped samples along the expected flight path.

    Departure and arrival closer than ``LOCAL_FLIGHT_THRESHOLD_NM`` are
    treated as pattern work around the departure field.

    Raises:
        ValueError: if ``duration_minutes`` is not positive.
    """
    if duration_minutes <= 0:
        raise ValueError(f"Flight duration must be positive, got {duration_minutes}")

    distance = haversine_nm(departure[0], departure[1], arrival[0], arrival[1])
    if distance < LOCAL_FLIGHT_THRESHOLD_NM:
        return generate_local_waypoints(departure, start_time, duration_minutes)
    return generate_great_circle_waypoints(departure, arrival, start_time, duration_minutes)


def calculate_waypoints(
    departure_location: str,
    arrival_location: str,
    start_time: datetime,
    duration_minutes: float,
) -> list[Waypoint]:
    """Parse booking location strings and generate waypoints."""
    return generate_waypoints(
        parse_location(departure_location),
        parse_location(arrival_location),
        start_time,
        duration_minutes,
    )
