"""Tests for the FastAPI API endpoints."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
import redis
from fastapi.testclient import TestClient

from wxreschedule.api.app import create_app
from wxreschedule.db.deps import get_db, get_optional_weather_client, get_queue, get_weather_client
from wxreschedule.db.models import BookingRow
from wxreschedule.fetch.openweather import QuotaExceededError, RateLimitedError, WeatherClient
from wxreschedule.models import ConflictMessage

START = datetime(2026, 6, 2, 14, 0, tzinfo=timezone.utc)


@pytest.fixture
def app_env(session_factory, queue, monkeypatch):
    """App wired to the in-memory DB, fake Redis queue and a mock weather client."""
    monkeypatch.setenv("ENVIRONMENT", "production")  # lifespan does not run without a context manager
    app = create_app()
    weather_client = MagicMock()

    def _override_get_db():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_weather_client] = lambda: weather_client
    app.dependency_overrides[get_queue] = lambda: queue
    return app, weather_client


@pytest.fixture
def client(app_env):
    app, _ = app_env
    return TestClient(app, raise_server_exceptions=False)


def set_weather(weather_client, observation):
    weather_client.get_observations.side_effect = lambda wps: [observation] * len(wps)


@pytest.fixture
def booking(session_factory, seed_users, add_booking):
    session = session_factory()
    seed_users(session)
    add_booking(session, "b-1", start=datetime.now(timezone.utc) + timedelta(hours=6))
    session.commit()
    session.close()
    return "b-1"


ROUTE = {
    "departure_location": "37.6213,-122.3790",
    "arrival_location": "33.9416,-118.4085",
    "start_time": START.isoformat(),
    "duration_minutes": 90,
    "training_level": "STUDENT_PILOT",
}


class TestCheckRoute:
    def test_safe_route(self, client, app_env, clear_obs):
        set_weather(app_env[1], clear_obs)

        resp = client.post("/api/weather/check-route", json=ROUTE)

        assert resp.status_code == 200
        data = resp.json()
        assert data["overall_status"] == "SAFE"
        assert data["safe"] is True
        assert len(data["waypoints"]) == 4
        assert data["violation_reasons"] == []

    def test_unsafe_route(self, client, app_env, low_vis_obs):
        set_weather(app_env[1], low_vis_obs)

        resp = client.post("/api/weather/check-route", json=ROUTE)

        data = resp.json()
        assert data["overall_status"] == "UNSAFE"
        assert data["violation_summary"] == ["VISIBILITY: 4 waypoints"]
        assert data["violation_reasons"][0] == "Waypoint 1: Visibility 2 SM is below minimum 5 SM"

    def test_airport_code_rejected(self, client):
        resp = client.post("/api/weather/check-route", json={**ROUTE, "departure_location": "KSFO"})
        assert resp.status_code == 400
        assert "Unsupported location" in resp.json()["detail"]

    def test_invalid_body(self, client):
        resp = client.post("/api/weather/check-route", json={**ROUTE, "duration_minutes": 0})
        assert resp.status_code == 422

    def test_rate_limited(self, client, app_env):
        app_env[1].get_observations.side_effect = RateLimitedError(2.4)

        resp = client.post("/api/weather/check-route", json=ROUTE)

        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "2"

    def test_provider_error(self, client, app_env):
        app_env[1].get_observations.side_effect = QuotaExceededError("quota", status_code=429)

        resp = client.post("/api/weather/check-route", json=ROUTE)

        assert resp.status_code == 502

    def test_no_weather_client_configured(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "production")
        app = create_app()
        resp = TestClient(app).post("/api/weather/check-route", json=ROUTE)
        assert resp.status_code == 503


class TestCheckBooking:
    def test_safe_booking(self, client, app_env, booking, queue, session_factory, clear_obs):
        set_weather(app_env[1], clear_obs)

        resp = client.post(f"/api/weather/bookings/{booking}/check")

        assert resp.status_code == 200
        assert resp.json()["held"] is False
        assert queue.depth() == 0

    def test_unsafe_booking_held_and_enqueued(
        self, client, app_env, booking, queue, session_factory, low_vis_obs
    ):
        set_weather(app_env[1], low_vis_obs)

        resp = client.post(f"/api/weather/bookings/{booking}/check")

        data = resp.json()
        assert data["held"] is True
        assert data["overall_status"] == "UNSAFE"

        session = session_factory()
        assert session.get(BookingRow, booking).status == "WEATHER_HOLD"
        session.close()
        message = ConflictMessage.model_validate_json(queue.receive().body)
        assert message.booking_id == booking

    def test_second_check_does_not_enqueue_again(self, client, app_env, booking, queue, low_vis_obs):
        set_weather(app_env[1], low_vis_obs)

        client.post(f"/api/weather/bookings/{booking}/check")
        resp = client.post(f"/api/weather/bookings/{booking}/check")

        assert resp.json()["held"] is False
        assert queue.depth() == 1

    def test_missing_booking(self, client):
        resp = client.post("/api/weather/bookings/nope/check")
        assert resp.status_code == 404

    def test_student_without_training_level(self, client, session_factory, seed_users, add_booking):
        session = session_factory()
        seed_users(session, training_level=None)
        add_booking(session, "b-2")
        session.commit()
        session.close()

        resp = client.post("/api/weather/bookings/b-2/check")

        assert resp.status_code == 422


class TestLatestCheck:
    def test_returns_most_recent_check(self, client, app_env, booking, clear_obs, low_vis_obs):
        set_weather(app_env[1], clear_obs)
        client.post(f"/api/weather/bookings/{booking}/check")
        set_weather(app_env[1], low_vis_obs)
        client.post(f"/api/weather/bookings/{booking}/check")

        resp = client.get(f"/api/weather/bookings/{booking}/checks/latest")

        assert resp.status_code == 200
        data = resp.json()
        assert data["booking_id"] == booking
        assert data["overall_status"] == "UNSAFE"
        assert data["violation_summary"] == ["VISIBILITY: 3 waypoints"]
        assert data["violation_reasons"][0] == "Waypoint 1: Visibility 2 SM is below minimum 5 SM"

    def test_404_without_checks(self, client, booking):
        resp = client.get(f"/api/weather/bookings/{booking}/checks/latest")

        assert resp.status_code == 404


class TestHealth:
    def test_healthy(self, client):
        resp = client.get("/health")

        assert resp.status_code == 200
        assert resp.json() == {
            "status": "ok", "queue_depth": 0, "dead_letter_depth": 0, "stale_holds": 0,
            "weather_cache": None,
        }

    def test_reports_weather_cache_stats(self, client, app_env):
        app, _ = app_env
        app.dependency_overrides[get_optional_weather_client] = lambda: WeatherClient("test-key")

        data = client.get("/health").json()

        assert data["weather_cache"] == {"size": 0, "hits": 0, "misses": 0, "requests": 0}

    def test_degraded_on_dead_letters(self, client, queue):
        queue.enqueue("bad")
        queue.dead_letter(queue.receive())

        data = client.get("/health").json()

        assert data["status"] == "degraded"
        assert data["dead_letter_depth"] == 1

    def test_degraded_on_stale_hold(self, client, session_factory, seed_users, add_booking):
        session = session_factory()
        seed_users(session)
        row = add_booking(session, "held", status="WEATHER_HOLD")
        row.updated_at = datetime.now(timezone.utc) - timedelta(hours=2)
        session.commit()
        session.close()

        data = client.get("/health").json()

        assert data["status"] == "degraded"
        assert data["stale_holds"] == 1

    def test_queue_unreachable(self, app_env):
        app, _ = app_env
        broken = MagicMock()
        broken.depth.side_effect = redis.ConnectionError("refused")
        app.dependency_overrides[get_queue] = lambda: broken

        data = TestClient(app).get("/health").json()

        assert data["status"] == "degraded"
        assert data["queue_depth"] is None
