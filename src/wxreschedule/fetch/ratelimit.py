"""Token-bucket rate limiter (non-blocking)."""

from __future__ import annotations

import math
import time
from typing import Callable


class TokenBucket:
    """Fixed-capacity bucket refilled continuously at ``per_minute`` tokens/minute.

    ``try_acquire`` never waits: it either takes a token or reports failure,
    leaving the retry decision to the caller.
    """

    def __init__(self, per_minute: int = 60, clock: Callable[[], float] = time.monotonic):
        if per_minute <= 0:
            raise ValueError("per_minute must be positive")
        self.capacity = float(per_minute)
        self.refill_per_second = per_minute / 60.0
        self._clock = clock
        self._tokens = self.capacity
        self._last_refill = clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_per_second)
        self._last_refill = now

    def try_acquire(self) -> bool:
        """Consume one token if available."""
        self._refill()
        if self._tokens >= 1:
            self._tokens -= 1
            return True
        return False

    def seconds_until_available(self) -> float:
        """Time until the next token can be taken (0 if one is available)."""
        self._refill()
        if self._tokens >= 1:
            return 0.0
        return math.ceil((1 - self._tokens) / self.refill_per_second * 1000) / 1000

    @property
    def tokens(self) -> float:
        self._refill()
        return self._tokens
