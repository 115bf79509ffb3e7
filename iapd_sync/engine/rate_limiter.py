"""Fixed-window rate limiter shared by the fetch layer."""

from __future__ import annotations

import time
from threading import Lock
from typing import Callable

_UNIT_SECONDS = {
    "milliseconds": 0.001,
    "seconds": 1.0,
    "minutes": 60.0,
    "hours": 3600.0,
}


class RateLimiter:
    """Allow at most ``permits`` acquisitions per ``interval`` window.

    ``acquire`` never fails; it only delays the caller until the next window opens.
    Window bookkeeping is guarded by a lock, sleeping happens outside of it so
    concurrent callers queue on the clock rather than on each other.
    """

    def __init__(
        self,
        permits: int,
        interval: float = 1.0,
        unit: str = "seconds",
        *,
        clock: Callable[[], float] = time.monotonic,
        sleeper: Callable[[float], None] = time.sleep,
    ) -> None:
        if permits <= 0:
            raise ValueError("permits must be > 0")
        if interval <= 0:
            raise ValueError("interval must be > 0")
        if unit not in _UNIT_SECONDS:
            raise ValueError(f"Unsupported time unit: {unit}")
        self.permits = permits
        self.interval_seconds = interval * _UNIT_SECONDS[unit]
        self._clock = clock
        self._sleep = sleeper
        self._lock = Lock()
        self._window_end: float | None = None
        self._remaining = 0

    @classmethod
    def per_second(cls, permits: int, **kwargs) -> "RateLimiter":
        return cls(permits, 1.0, "seconds", **kwargs)

    def acquire(self) -> None:
        while True:
            with self._lock:
                now = self._clock()
                if self._window_end is None or now >= self._window_end:
                    self._window_end = now + self.interval_seconds
                    self._remaining = self.permits
                if self._remaining > 0:
                    self._remaining -= 1
                    return
                wait = max(self._window_end - now, 0.001)
            self._sleep(wait)

    def __repr__(self) -> str:
        return f"RateLimiter(permits={self.permits}, interval={self.interval_seconds}s)"


__all__ = ["RateLimiter"]
