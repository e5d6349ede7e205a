from __future__ import annotations

from threading import Lock
from typing import Optional

from ..core.ports.clock_port import ClockPort, SystemClock
from ..core.ports.rate_limiter_port import RateLimiterPort


class SimpleRateLimiter(RateLimiterPort):
    """Space feed requests at least 1/rps seconds apart across all download threads."""

    def __init__(self, rps: float, clock: Optional[ClockPort] = None) -> None:
        self._interval = 1.0 / max(0.0001, rps)
        self._clock = clock or SystemClock()
        self._lock = Lock()
        self._last: Optional[float] = None

    def acquire(self) -> None:
        with self._lock:
            if self._last is not None:
                wait = self._last + self._interval - self._clock.monotonic()
                if wait > 0:
                    self._clock.sleep(wait)
            self._last = self._clock.monotonic()
