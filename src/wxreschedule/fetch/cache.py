"""In-memory, time-bounded observation cache."""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from wxreschedule.models import WeatherObservation

COORD_PRECISION = 4
TIME_BUCKET_SECONDS = 600


def cache_key(lat: float, lon: float, timestamp: datetime) -> str:
    """Quantise a request so nearby points in the same window share an entry."""
    bucket = int(timestamp.timestamp() // TIME_BUCKET_SECONDS)
    return f"{lat:.{COORD_PRECISION}f},{lon:.{COORD_PRECISION}f},{bucket}"


@dataclass
class _Entry:
    observation: WeatherObservation
    expires_at: float


class ObservationCache:
    """Dict-backed TTL cache; expired entries are dropped on read and on every write."""

    def __init__(self, ttl_seconds: float = 600.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> WeatherObservation | None:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if self._clock() > entry.expires_at:
            del self._entries[key]
            self.misses += 1
            return None
        self.hits += 1
        return entry.observation

    def set(self, key: str, observation: WeatherObservation) -> None:
        now = self._clock()
        self._purge_expired(now)
        self._entries[key] = _Entry(observation, now + self.ttl_seconds)

    def _purge_expired(self, now: float) -> None:
        # Keys carry a time bucket and are rarely read again once it has passed
        expired = [k for k, e in self._entries.items() if now > e.expires_at]
        for key in expired:
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
