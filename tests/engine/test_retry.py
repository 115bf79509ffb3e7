from __future__ import annotations

import random

import httpx
import pytest

from iapd_sync.engine.errors import (
    ErrorCategory,
    HttpStatusError,
    LocalIOError,
    TransientNetworkError,
)
from iapd_sync.engine.retry import RetryExecutor, RetryPolicy, classify


class Flaky:
    def __init__(self, failures: list[BaseException], result: object = "ok") -> None:
        self.failures = list(failures)
        self.calls = 0
        self.result = result

    def __call__(self) -> object:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


def test_transient_failure_is_retried_exactly_max_retries_times(sleeper) -> None:
    executor = RetryExecutor(RetryPolicy(max_retries=3, jitter=0.0), sleeper=sleeper)
    operation = Flaky([TransientNetworkError("reset")] * 10)
    with pytest.raises(TransientNetworkError):
        executor.execute_with_retry(operation, name="flaky")
    assert operation.calls == 4
    assert sleeper.calls == [1.0, 2.0, 4.0]


def test_terminal_failure_is_not_retried(sleeper) -> None:
    executor = RetryExecutor(RetryPolicy(max_retries=5), sleeper=sleeper)
    operation = Flaky([ValueError("bad input")])
    with pytest.raises(ValueError):
        executor.execute_with_retry(operation)
    assert operation.calls == 1
    assert sleeper.calls == []


def test_recovers_after_transient_failures(sleeper) -> None:
    executor = RetryExecutor(RetryPolicy(max_retries=5, jitter=0.0), sleeper=sleeper)
    operation = Flaky([httpx.ConnectTimeout("slow"), HttpStatusError(503, "https://x")], result=None)
    assert executor.execute_with_retry(operation) is None
    assert operation.calls == 3
    assert len(sleeper.calls) == 2


def test_retry_after_hint_overrides_backoff(sleeper) -> None:
    executor = RetryExecutor(RetryPolicy(max_retries=2, max_delay=30.0), sleeper=sleeper)
    operation = Flaky([HttpStatusError(429, "https://x", retry_after=7), HttpStatusError(429, "https://x", retry_after=90)])
    executor.execute_with_retry(operation)
    assert sleeper.calls == [7.0, 30.0]


def test_per_call_overrides(sleeper) -> None:
    executor = RetryExecutor(RetryPolicy(max_retries=5, jitter=0.0), sleeper=sleeper)
    operation = Flaky([TransientNetworkError("x")] * 3)
    with pytest.raises(TransientNetworkError):
        executor.execute_with_retry(operation, max_retries=1, base_delay=0.5)
    assert operation.calls == 2
    assert sleeper.calls == [0.5]


def test_backoff_is_capped_and_floored() -> None:
    executor = RetryExecutor(RetryPolicy(base_delay=1.0, multiplier=2.0, max_delay=10.0, jitter=0.1), rng=random.Random(7))
    for attempt in range(1, 12):
        delay = executor.backoff(attempt)
        assert delay >= 1.0
        assert delay <= 11.0
    assert executor.backoff(20) >= 9.0


def test_first_retry_jitter_never_drops_below_base() -> None:
    executor = RetryExecutor(RetryPolicy(base_delay=2.0, jitter=0.1), rng=random.Random(3))
    delays = [executor.backoff(1) for _ in range(200)]
    assert min(delays) == 2.0
    assert max(delays) <= 2.2 + 1e-9
    assert max(delays) > 2.0


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (TransientNetworkError("x"), ErrorCategory.TRANSIENT),
        (HttpStatusError(500, "u"), ErrorCategory.TRANSIENT),
        (HttpStatusError(429, "u"), ErrorCategory.TRANSIENT),
        (HttpStatusError(404, "u"), ErrorCategory.TERMINAL),
        (LocalIOError("disk"), ErrorCategory.LOCAL_IO),
        (httpx.ReadTimeout("slow"), ErrorCategory.TRANSIENT),
        (ConnectionResetError(), ErrorCategory.TRANSIENT),
        (KeyError("k"), ErrorCategory.TERMINAL),
        (TypeError("t"), ErrorCategory.TERMINAL),
    ],
)
def test_classify(exc: BaseException, expected: ErrorCategory) -> None:
    assert classify(exc) is expected
