from __future__ import annotations

import threading
import time
from collections import Counter

import pytest

from iapd_sync.engine.rate_limiter import RateLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def test_third_acquire_waits_for_next_window() -> None:
    limiter = RateLimiter(2, 2, "seconds")
    started = time.monotonic()
    limiter.acquire()
    limiter.acquire()
    limiter.acquire()
    assert time.monotonic() - started >= 1.5


def test_window_is_reset_after_interval() -> None:
    clock = FakeClock()
    limiter = RateLimiter(3, 1.0, clock=clock, sleeper=clock.sleep)
    for _ in range(3):
        limiter.acquire()
    assert clock.sleeps == []
    limiter.acquire()
    assert clock.sleeps == [pytest.approx(1.0)]
    limiter.acquire()
    limiter.acquire()
    assert len(clock.sleeps) == 1


def test_units_are_converted_to_seconds() -> None:
    assert RateLimiter(1, 250, "milliseconds").interval_seconds == pytest.approx(0.25)
    assert RateLimiter(1, 2, "minutes").interval_seconds == 120
    assert RateLimiter.per_second(5).permits == 5


@pytest.mark.parametrize(
    ("permits", "interval", "unit"),
    [(0, 1.0, "seconds"), (-1, 1.0, "seconds"), (1, 0, "seconds"), (1, 1.0, "fortnights")],
)
def test_invalid_construction(permits: int, interval: float, unit: str) -> None:
    with pytest.raises(ValueError):
        RateLimiter(permits, interval, unit)


class SharedClock:
    """Thread-safe fake clock; a sleep jumps to the instant the sleeper was waiting for."""

    def __init__(self) -> None:
        self.now = 0.0
        self._lock = threading.Lock()
        self._local = threading.local()

    def __call__(self) -> float:
        with self._lock:
            self._local.last = self.now
            return self.now

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.now = max(self.now, self._local.last + seconds)

    def last_read(self) -> float:
        return self._local.last


def test_concurrent_callers_never_exceed_window_budget() -> None:
    clock = SharedClock()
    limiter = RateLimiter(3, 1.0, clock=clock, sleeper=clock.sleep)
    grants: list[float] = []
    grants_lock = threading.Lock()
    start = threading.Barrier(8)

    def worker() -> None:
        start.wait()
        for _ in range(6):
            limiter.acquire()
            granted_at = clock.last_read()
            with grants_lock:
                grants.append(granted_at)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert len(grants) == 48
    per_window = Counter(int(granted_at // 1.0) for granted_at in grants)
    assert max(per_window.values()) <= 3
    assert len(per_window) >= 16
