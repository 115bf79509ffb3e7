"""Retry with exponential backoff and jitter for transient failures."""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

import httpx
import structlog

from ..config import RetryConfig
from .errors import ErrorCategory, HttpStatusError, PipelineError

T = TypeVar("T")


@dataclass(slots=True)
class RetryPolicy:
    max_retries: int = 5
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 60.0
    jitter: float = 0.10

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            max_retries=config.max_retries,
            base_delay=config.base_delay,
            multiplier=config.multiplier,
            max_delay=config.max_delay,
            jitter=config.jitter,
        )


def classify(exc: BaseException) -> ErrorCategory:
    """Map a failure to its category.

    Categorised pipeline errors keep the category assigned where they were raised.
    Raw transport errors and OS-level I/O errors coming straight out of an operation
    are transient; everything else is terminal.
    """

    if isinstance(exc, PipelineError):
        return exc.category
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return ErrorCategory.TRANSIENT
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return ErrorCategory.TRANSIENT
    if isinstance(exc, OSError):
        return ErrorCategory.TRANSIENT
    return ErrorCategory.TERMINAL


class RetryExecutor:
    """Run operations, retrying transient failures up to a bounded number of times."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        logger: structlog.BoundLogger | None = None,
        *,
        sleeper: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self.logger = logger or structlog.get_logger("iapd_sync.retry")
        self._sleep = sleeper
        self._rng = rng or random.Random()

    def backoff(self, attempt: int, base_delay: float | None = None) -> float:
        """Delay before retry number ``attempt`` (1-based), jittered and floored at base.

        The floor makes the first retry's jitter one-sided: it lands in
        ``[base, base * (1 + jitter)]`` rather than ``base * (1 ± jitter)``.
        """

        base = self.policy.base_delay if base_delay is None else base_delay
        raw = min(base * (self.policy.multiplier ** (attempt - 1)), self.policy.max_delay)
        if self.policy.jitter:
            raw *= 1.0 + self._rng.uniform(-self.policy.jitter, self.policy.jitter)
        return max(raw, base)

    def _delay_for(self, exc: BaseException, attempt: int, base_delay: float | None) -> float:
        if isinstance(exc, HttpStatusError) and exc.retry_after is not None:
            return min(max(exc.retry_after, 0.0), self.policy.max_delay)
        return self.backoff(attempt, base_delay)

    def execute_with_retry(
        self,
        operation: Callable[[], T],
        max_retries: int | None = None,
        base_delay: float | None = None,
        name: str = "operation",
    ) -> T:
        retries = self.policy.max_retries if max_retries is None else max_retries
        attempt = 0
        while True:
            try:
                result = operation()
            except Exception as exc:  # noqa: BLE001
                category = classify(exc)
                if not category.retryable:
                    self.logger.warning(
                        "retry_terminal_failure",
                        operation=name,
                        attempt=attempt + 1,
                        category=category.value,
                        error=str(exc),
                    )
                    raise
                if attempt >= retries:
                    self.logger.error(
                        "retry_exhausted",
                        operation=name,
                        attempts=attempt + 1,
                        category=category.value,
                        error=str(exc),
                    )
                    raise
                attempt += 1
                delay = self._delay_for(exc, attempt, base_delay)
                self.logger.warning(
                    "retry_scheduled",
                    operation=name,
                    retry=attempt,
                    max_retries=retries,
                    delay=round(delay, 3),
                    error=str(exc),
                )
                self._sleep(delay)
                continue
            if attempt:
                self.logger.info("retry_succeeded", operation=name, retries=attempt)
            else:
                self.logger.debug("operation_succeeded", operation=name)
            return result


__all__ = ["RetryExecutor", "RetryPolicy", "classify"]
