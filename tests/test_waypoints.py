"""Tests for waypoint generation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from wxreschedule.fetch.waypoints import (
    LOCAL_FLIGHT_RADIUS_NM,
    UnsupportedLocationError,
    calculate_waypoints,
    destination_point,
    generate_waypoints,
    haversine_nm,
    intermediate_point,
    parse_location,
)

KSFO = (37.6213, -122.3790)
KLAX = (33.9416, -118.4085)
START = datetime(2026, 6, 2, 14, 0, tzinfo=timezone.utc)


def test_haversine_known_distance():
    """SFO to LAX is roughly 293 nm."""
    d = haversine_nm(*KSFO, *KLAX)
    assert 285 < d < 300


def test_haversine_zero():
    assert haversine_nm(*KSFO, *KSFO) == 0


def test_intermediate_point_endpoints():
    assert intermediate_point(*KSFO, *KLAX, 0.0) == pytest.approx(KSFO)
    assert intermediate_point(*KSFO, *KLAX, 1.0) == pytest.approx(KLAX)


def test_intermediate_point_midpoint_is_equidistant():
    mid = intermediate_point(*KSFO, *KLAX, 0.5)
    assert haversine_nm(*KSFO, *mid) == pytest.approx(haversine_nm(*mid, *KLAX), rel=1e-6)


def test_destination_point_distance():
    lat, lon = destination_point(*KSFO, 90.0, 25.0)
    assert haversine_nm(*KSFO, lat, lon) == pytest.approx(25.0, rel=1e-6)


def test_parse_location():
    assert parse_location("37.6213,-122.3790") == (37.6213, -122.379)
    assert parse_location(" 51.5 , -0.12 ") == (51.5, -0.12)


@pytest.mark.parametrize("value", ["KSFO", "", "91,0", "0,181", "37.6;-122.3"])
def test_parse_location_rejects(value):
    with pytest.raises(UnsupportedLocationError):
        parse_location(value)


def test_unsupported_location_is_value_error():
    """Callers that handle ValueError also handle bad locations."""
    with pytest.raises(ValueError):
        calculate_waypoints("KSFO", "KLAX", START, 60)


def test_cross_country_samples_every_30_minutes():
    points = generate_waypoints(KSFO, KLAX, START, 120)

    assert len(points) == 5
    assert (points[0].lat, points[0].lon) == KSFO
    assert (points[-1].lat, points[-1].lon) == KLAX
    assert [p.timestamp for p in points] == [START + timedelta(minutes=m) for m in (0, 30, 60, 90, 120)]


def test_cross_country_uneven_duration_ends_at_arrival_time():
    points = generate_waypoints(KSFO, KLAX, START, 75)

    assert [p.timestamp for p in points] == [START + timedelta(minutes=m) for m in (0, 30, 60, 75)]
    assert (points[-1].lat, points[-1].lon) == KLAX


def test_short_flight_has_both_ends():
    points = generate_waypoints(KSFO, KLAX, START, 20)
    assert len(points) == 2
    assert points[-1].timestamp == START + timedelta(minutes=20)


def test_local_flight_circles_the_field():
    points = generate_waypoints(KSFO, KSFO, START, 60)

    assert len(points) == 3
    for p in points:
        assert haversine_nm(*KSFO, p.lat, p.lon) == pytest.approx(LOCAL_FLIGHT_RADIUS_NM, rel=1e-6)
    # Circle closes where it started
    assert (points[-1].lat, points[-1].lon) == pytest.approx((points[0].lat, points[0].lon))


def test_non_positive_duration_rejected():
    with pytest.raises(ValueError, match="positive"):
        generate_waypoints(KSFO, KLAX, START, 0)


def test_calculate_waypoints_parses_strings():
    points = calculate_waypoints("37.6213,-122.3790", "33.9416,-118.4085", START, 60)
    assert len(points) == 3
    assert points[0].timestamp == START
