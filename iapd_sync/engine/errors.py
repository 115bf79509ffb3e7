"""Closed error taxonomy; every pipeline failure carries its category from the raise site."""

from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    TRANSIENT = "transient"
    TERMINAL = "terminal"
    LOCAL_IO = "local_io"
    DATA_SHAPE = "data_shape"

    @property
    def retryable(self) -> bool:
        return self is ErrorCategory.TRANSIENT


class PipelineError(Exception):
    """Base class for categorised failures."""

    category: ErrorCategory = ErrorCategory.TERMINAL

    def __init__(self, message: str, *, category: ErrorCategory | None = None) -> None:
        super().__init__(message)
        if category is not None:
            self.category = category


class TransientNetworkError(PipelineError):
    """Timeout, reset, refused connection or other transport-level failure."""

    category = ErrorCategory.TRANSIENT


class TerminalError(PipelineError):
    """Failure that will not succeed on retry."""

    category = ErrorCategory.TERMINAL


class LocalIOError(PipelineError):
    """Disk or permission failure on the local side."""

    category = ErrorCategory.LOCAL_IO


class DataShapeError(PipelineError):
    """Malformed input row, envelope or file layout."""

    category = ErrorCategory.DATA_SHAPE


class HttpStatusError(PipelineError):
    """Non-success HTTP status. 429 and 5xx are transient, other 4xx terminal."""

    def __init__(
        self,
        status_code: int,
        url: str,
        body_snippet: str = "",
        retry_after: float | None = None,
    ) -> None:
        category = (
            ErrorCategory.TRANSIENT
            if status_code == 429 or status_code >= 500
            else ErrorCategory.TERMINAL
        )
        super().__init__(f"HTTP {status_code} for {url}", category=category)
        self.status_code = status_code
        self.url = url
        self.body_snippet = body_snippet
        self.retry_after = retry_after


class RunAbortedError(PipelineError):
    """Raised when a run must stop, e.g. too many consecutive local I/O failures."""

    category = ErrorCategory.LOCAL_IO


__all__ = [
    "DataShapeError",
    "ErrorCategory",
    "HttpStatusError",
    "LocalIOError",
    "PipelineError",
    "RunAbortedError",
    "TerminalError",
    "TransientNetworkError",
]
