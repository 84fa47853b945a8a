"""OpenWeatherMap client: point observations with caching and rate limiting.

This module is the only place provider units are seen. Everything it
returns is a canonical ``WeatherObservation`` (statute miles, feet, knots).
"""

from __future__ import annotations

import logging
import os
import time
from datetime import datetime, timezone
from typing import Callable, Optional

import requests
from pydantic import BaseModel, ValidationError

from wxreschedule.fetch.cache import ObservationCache, cache_key
from wxreschedule.fetch.ratelimit import TokenBucket
from wxreschedule.models import Waypoint, WeatherObservation

logger = logging.getLogger(__name__)

OWM_BASE_URL = "https://api.openweathermap.org/data/2.5"

METERS_TO_MILES = 0.000621371
MPS_TO_KNOTS = 1.94384

# Cloud cover (%) -> estimated ceiling (ft). The free OWM tier has no
# measured ceiling, so this banding is an approximation.
CEILING_BANDS: list[tuple[float, int]] = [
    (25, 10000),   # few
    (50, 5000),    # scattered
    (75, 3000),    # broken
]
CLEAR_SKY_CEILING_FT = 25000
OVERCAST_CEILING_FT = 1000


# --- Errors ---


class WeatherClientError(Exception):
    """Provider call failed."""

    retryable = True

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(WeatherClientError):
    """Local token bucket is empty; the request was not sent."""

    def __init__(self, retry_after: float):
        super().__init__(
            f"Rate limit exceeded, retry in {retry_after:.1f}s", status_code=None
        )
        self.retry_after = retry_after


class QuotaExceededError(WeatherClientError):
    """Provider rejected the call with HTTP 429."""


class WeatherTimeoutError(WeatherClientError):
    """Provider did not answer within the client timeout."""


class InvalidCredentialsError(WeatherClientError):
    """Provider rejected the API key (HTTP 401). Retrying will not help."""

    retryable = False


class MalformedResponseError(WeatherClientError):
    """Provider answered with a payload that fails schema validation."""

    retryable = False


# --- Raw payload schema ---


class _OWMClouds(BaseModel):
    all: float


class _OWMWind(BaseModel):
    speed: float
    gust: Optional[float] = None


class _OWMCondition(BaseModel):
    main: str
    description: str = ""


class OWMResponse(BaseModel):
    """Subset of the /weather response we rely on."""

    visibility: float
    clouds: _OWMClouds
    wind: _OWMWind
    weather: list[_OWMCondition]
    dt: int


# --- Conversions ---


def meters_to_miles(meters: float) -> float:
    return meters * METERS_TO_MILES


def mps_to_knots(mps: float) -> float:
    return mps * MPS_TO_KNOTS


def estimate_ceiling(cloud_cover_pct: float) -> int:
    """Map total cloud cover to an estimated ceiling in feet."""
    if cloud_cover_pct <= 0:
        return CLEAR_SKY_CEILING_FT
    for upper, ceiling in CEILING_BANDS:
        if cloud_cover_pct < upper:
            return ceiling
    return OVERCAST_CEILING_FT


def normalize_observation(raw: OWMResponse) -> WeatherObservation:
    """Convert a validated provider payload into canonical units."""
    return WeatherObservation(
        visibility_miles=meters_to_miles(raw.visibility),
        ceiling_ft=estimate_ceiling(raw.clouds.all),
        wind_kt=mps_to_knots(raw.wind.speed),
        wind_gust_kt=mps_to_knots(raw.wind.gust) if raw.wind.gust else None,
        phenomena=[c.main for c in raw.weather],
    )


class WeatherClient:
    """Point-observation client owning its cache and token bucket.

    Construct one per process and pass it to whoever needs weather; the
    cache and limiter are instance state, not module globals.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = OWM_BASE_URL,
        timeout: float = 10.0,
        cache_enabled: bool = True,
        cache_ttl_seconds: float = 600.0,
        rate_limit_per_minute: int = 60,
        inter_request_delay: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.cache_enabled = cache_enabled
        self.inter_request_delay = inter_request_delay
        self.cache = ObservationCache(cache_ttl_seconds, clock=clock)
        self.rate_limiter = TokenBucket(rate_limit_per_minute, clock=clock)
        self.session = requests.Session()
        self.request_count = 0
        self._sleep = sleep

    def get_observation(
        self, lat: float, lon: float, timestamp: datetime | None = None
    ) -> WeatherObservation:
        """Fetch the observation for a coordinate, served from cache when possible.

        Raises:
            RateLimitedError: no token available (nothing was sent).
            InvalidCredentialsError: HTTP 401.
            QuotaExceededError: HTTP 429.
            WeatherTimeoutError: request timed out.
            MalformedResponseError: payload failed validation.
            WeatherClientError: any other transport or HTTP failure.
        """
        timestamp = timestamp or datetime.now(timezone.utc)
        key = cache_key(lat, lon, timestamp)
        if self.cache_enabled:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("Cache hit for %s", key)
                return cached

        if not self.rate_limiter.try_acquire():
            raise RateLimitedError(self.rate_limiter.seconds_until_available())

        observation = self._fetch(lat, lon)
        if self.cache_enabled:
            self.cache.set(key, observation)
        return observation

    def get_observations(self, waypoints: list[Waypoint]) -> list[WeatherObservation]:
        """Fetch observations for each waypoint in order.

        Any single failure aborts the batch, so a route is never evaluated
        on partial data.
        """
        results: list[WeatherObservation] = []
        for idx, wp in enumerate(waypoints):
            results.append(self.get_observation(wp.lat, wp.lon, wp.timestamp))
            if idx < len(waypoints) - 1 and self.inter_request_delay > 0:
                self._sleep(self.inter_request_delay)
        return results

    def _fetch(self, lat: float, lon: float) -> WeatherObservation:
        params = {"lat": lat, "lon": lon, "appid": self.api_key}
        url = f"{self.base_url}/weather"
        logger.info("Fetching OpenWeatherMap observation for %.4f,%.4f", lat, lon)

        try:
            resp = self.session.get(url, params=params, timeout=self.timeout)
        except requests.Timeout as exc:
            raise WeatherTimeoutError(f"OpenWeatherMap timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise WeatherClientError(f"OpenWeatherMap request failed: {exc}") from exc
        self.request_count += 1

        if resp.status_code == 401:
            raise InvalidCredentialsError("Invalid OpenWeatherMap API key", status_code=401)
        if resp.status_code == 429:
            raise QuotaExceededError("OpenWeatherMap quota exceeded", status_code=429)
        if not resp.ok:
            raise WeatherClientError(
                f"OpenWeatherMap API error: {resp.status_code} {resp.reason}",
                status_code=resp.status_code,
            )

        try:
            raw = OWMResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            raise MalformedResponseError(
                f"Malformed OpenWeatherMap response: {exc}", status_code=resp.status_code
            ) from exc

        return normalize_observation(raw)

    def clear_cache(self) -> None:
        self.cache.clear()

    def cache_stats(self) -> dict[str, int]:
        return {
            "size": len(self.cache),
            "hits": self.cache.hits,
            "misses": self.cache.misses,
            "requests": self.request_count,
        }


def create_weather_client(api_key: str | None = None, **kwargs) -> WeatherClient:
    """Build a client from an explicit key or ``OPENWEATHERMAP_API_KEY``."""
    key = api_key or os.environ.get("OPENWEATHERMAP_API_KEY")
    if not key:
        raise ValueError(
            "OpenWeatherMap API key is required. Set OPENWEATHERMAP_API_KEY "
            "or pass api_key."
        )
    return WeatherClient(key, **kwargs)
