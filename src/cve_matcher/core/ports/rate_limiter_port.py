from __future__ import annotations

from typing import Protocol


class RateLimiterPort(Protocol):
    def acquire(self) -> None:
        """Block until the next feed request may be sent."""
