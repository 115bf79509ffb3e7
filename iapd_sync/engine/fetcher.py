"""HTTP fetching under a uniform timeout, header, throttling and retry policy."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

import httpx
import structlog

from ..config import HttpConfig
from .errors import HttpStatusError, LocalIOError, TerminalError, TransientNetworkError
from .rate_limiter import RateLimiter
from .retry import RetryExecutor

BODY_SNIPPET_LENGTH = 200
# request errors that no amount of retrying fixes; a corrupt encoded body is one
UNRECOVERABLE_REQUEST_ERRORS = (httpx.TooManyRedirects, httpx.UnsupportedProtocol, httpx.DecodingError)


@dataclass(slots=True)
class FetchRequest:
    """Input for the fetcher."""

    url: str
    method: str = "GET"
    params: dict[str, Any] | None = None
    data: dict[str, Any] | None = None
    headers: dict[str, str] | None = None
    # (connect, read) seconds; falls back to the configured defaults
    timeout: tuple[float, float] | None = None
    name: str = "fetch"


@dataclass(slots=True)
class FetchResponse:
    """Standardised response wrapper."""

    url: str
    status_code: int
    text: str
    headers: Dict[str, str]
    raw: httpx.Response | None = field(repr=False, default=None)

    def json(self) -> Any:
        if self.raw is None:
            raise ValueError("No raw response attached")
        return self.raw.json()


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given in seconds; dates and garbage yield None."""

    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    try:
        seconds = float(text)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


class Fetcher:
    """Perform throttled, retried HTTP calls and streamed downloads."""

    def __init__(
        self,
        settings: HttpConfig | None = None,
        limiter: RateLimiter | None = None,
        retry: RetryExecutor | None = None,
        logger: structlog.BoundLogger | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.settings = settings or HttpConfig()
        self.limiter = limiter
        self.logger = logger or structlog.get_logger("iapd_sync.fetcher")
        self.retry = retry or RetryExecutor(logger=self.logger)
        headers = {"User-Agent": self.settings.user_agent}
        headers.update(self.settings.extra_headers)
        self._client = httpx.Client(
            follow_redirects=True,
            timeout=self._timeout(None),
            headers=headers,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "Fetcher":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    def fetch(self, request: FetchRequest) -> FetchResponse:
        return self.retry.execute_with_retry(lambda: self._fetch_once(request), name=request.name)

    def download(
        self,
        url: str,
        destination: Path,
        *,
        timeout: tuple[float, float] | None = None,
        headers: dict[str, str] | None = None,
        name: str = "download",
    ) -> Path:
        """Stream ``url`` into ``destination`` and return the written path."""

        return self.retry.execute_with_retry(
            lambda: self._download_once(url, destination, timeout, headers), name=name
        )

    def feed_timeout(self) -> tuple[float, float]:
        return (self.settings.feed_connect_timeout, self.settings.feed_read_timeout)

    # ------------------------------------------------------------------
    def _timeout(self, override: tuple[float, float] | None) -> httpx.Timeout:
        connect, read = override or (self.settings.connect_timeout, self.settings.read_timeout)
        return httpx.Timeout(read, connect=connect)

    def _acquire(self) -> None:
        if self.limiter is not None:
            self.limiter.acquire()

    def _fetch_once(self, request: FetchRequest) -> FetchResponse:
        self._acquire()
        try:
            response = self._client.request(
                method=request.method,
                url=request.url,
                params=request.params,
                data=request.data,
                headers=request.headers,
                timeout=self._timeout(request.timeout),
            )
        except UNRECOVERABLE_REQUEST_ERRORS as exc:
            raise TerminalError(f"{type(exc).__name__}: {exc}") from exc
        except httpx.TransportError as exc:
            self.logger.warning("fetch_error", url=request.url, error=str(exc))
            raise TransientNetworkError(f"{type(exc).__name__}: {exc}") from exc
        except httpx.RequestError as exc:
            raise TerminalError(f"{type(exc).__name__}: {exc}") from exc
        self._raise_for_status(response, request.url)
        return FetchResponse(
            url=str(response.url),
            status_code=response.status_code,
            text=response.text,
            headers=dict(response.headers),
            raw=response,
        )

    def _download_once(
        self,
        url: str,
        destination: Path,
        timeout: tuple[float, float] | None,
        headers: dict[str, str] | None,
    ) -> Path:
        self._acquire()
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise LocalIOError(f"Cannot create {destination.parent}: {exc}") from exc
        partial = destination.with_name(destination.name + ".part")
        try:
            with self._client.stream(
                "GET", url, headers=headers, timeout=self._timeout(timeout)
            ) as response:
                if response.status_code >= 400:
                    response.read()
                    self._raise_for_status(response, url)
                written = self._write_stream(response, partial)
            os.replace(partial, destination)
        except UNRECOVERABLE_REQUEST_ERRORS as exc:
            self._discard(partial)
            raise TerminalError(f"{type(exc).__name__}: {exc}") from exc
        except httpx.TransportError as exc:
            self._discard(partial)
            self.logger.warning("download_error", url=url, error=str(exc))
            raise TransientNetworkError(f"{type(exc).__name__}: {exc}") from exc
        except httpx.RequestError as exc:
            self._discard(partial)
            raise TerminalError(f"{type(exc).__name__}: {exc}") from exc
        except OSError as exc:
            self._discard(partial)
            raise LocalIOError(f"Cannot write {destination}: {exc}") from exc
        except HttpStatusError:
            self._discard(partial)
            raise
        self.logger.debug("download_complete", url=url, path=str(destination), bytes=written)
        return destination

    def _write_stream(self, response: httpx.Response, target: Path) -> int:
        written = 0
        with target.open("wb") as stream:
            for chunk in response.iter_bytes(chunk_size=self.settings.chunk_size):
                stream.write(chunk)
                written += len(chunk)
        return written

    @staticmethod
    def _discard(path: Path) -> None:
        if path.exists():
            path.unlink()

    def _raise_for_status(self, response: httpx.Response, url: str) -> None:
        status = response.status_code
        if status < 400:
            return
        snippet = (response.text or "")[:BODY_SNIPPET_LENGTH]
        retry_after = None
        if status == 429:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
        self.logger.warning(
            "fetch_bad_status", url=url, status=status, retry_after=retry_after, body=snippet
        )
        raise HttpStatusError(status, url, snippet, retry_after)


__all__ = ["FetchRequest", "FetchResponse", "Fetcher", "parse_retry_after"]
