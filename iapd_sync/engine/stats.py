"""Run-scoped counters shared by the pipeline stages."""

from __future__ import annotations

import threading
from collections import Counter
from dataclasses import dataclass, field

from .errors import ErrorCategory


@dataclass(slots=True)
class StatsSnapshot:
    counters: dict[str, int] = field(default_factory=dict)
    failures: dict[str, int] = field(default_factory=dict)

    @property
    def total_failures(self) -> int:
        return sum(self.failures.values())


class RunStatistics:
    """Thread-safe aggregate owned by a single run."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: Counter[str] = Counter()
        self._failures: Counter[ErrorCategory] = Counter()
        self._consecutive_local_io = 0

    def increment(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self._counters[name] += amount

    def record_success(self, name: str) -> None:
        with self._lock:
            self._counters[name] += 1
            self._consecutive_local_io = 0

    def record_failure(self, category: ErrorCategory, name: str | None = None) -> int:
        """Count a failed unit; returns the current run of consecutive local I/O failures."""

        with self._lock:
            self._failures[category] += 1
            if name:
                self._counters[name] += 1
            if category is ErrorCategory.LOCAL_IO:
                self._consecutive_local_io += 1
            else:
                self._consecutive_local_io = 0
            return self._consecutive_local_io

    def get(self, name: str) -> int:
        with self._lock:
            return self._counters[name]

    @property
    def consecutive_local_io(self) -> int:
        with self._lock:
            return self._consecutive_local_io

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return StatsSnapshot(
                counters=dict(self._counters),
                failures={category.value: count for category, count in self._failures.items()},
            )


__all__ = ["RunStatistics", "StatsSnapshot"]
