"""Pydantic models used across the IAPD sync configuration flow."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/80.0.3987.149 Safari/537.36"
)

ConfigSource = Literal["default", "file", "command-line"]


class RateLimitConfig(BaseModel):
    """Operations-per-second budgets; lookups and downloads are throttled independently."""

    url_rate_per_second: int = 1
    download_rate_per_second: int = 1
    default_rate_per_second: int = 10

    @field_validator("url_rate_per_second", "download_rate_per_second", "default_rate_per_second")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("rate limits must be positive integers")
        return value


class RetryConfig(BaseModel):
    """Exponential backoff parameters for transient failures."""

    max_retries: int = 5
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 60.0
    jitter: float = 0.10

    @model_validator(mode="after")
    def _validate_ranges(self) -> "RetryConfig":
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must be non-negative")
        if self.multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")
        if not 0.0 <= self.jitter < 1.0:
            raise ValueError("jitter must be within [0, 1)")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        return self


class HttpConfig(BaseModel):
    """Timeouts and identifying headers applied to every request."""

    connect_timeout: float = 30.0
    read_timeout: float = 60.0
    feed_connect_timeout: float = 45.0
    feed_read_timeout: float = 120.0
    user_agent: str = DEFAULT_USER_AGENT
    extra_headers: dict[str, str] = Field(
        default_factory=lambda: {"Accept-Language": "en-US,en;q=0.5", "Accept": "*/*"}
    )
    chunk_size: int = 4096

    @field_validator(
        "connect_timeout", "read_timeout", "feed_connect_timeout", "feed_read_timeout"
    )
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeouts must be positive")
        return value

    @field_validator("chunk_size")
    @classmethod
    def _positive_chunk(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("chunk_size must be positive")
        return value


class EndpointConfig(BaseModel):
    """Remote endpoints of the adviser information service."""

    feed_url_template: str = (
        "https://reports.adviserinfo.sec.gov/reports/CompilationReports/"
        "IA_FIRM_SEC_Feed_{date}.xml.gz"
    )
    feed_lookback_days: int = 7
    lookup_url_template: str = (
        "https://api.adviserinfo.sec.gov/search/firm/{crd}"
        "?hl=true&nrows=12&query=&start=0&wt=json"
    )
    brochure_url_prefix: str = (
        "https://files.adviserinfo.sec.gov/IAPD/Content/Common/crd_iapd_Brochure.aspx?BRCHR_VRSN_ID="
    )

    @model_validator(mode="after")
    def _validate_templates(self) -> "EndpointConfig":
        if "{date}" not in self.feed_url_template:
            raise ValueError("feed_url_template must contain a {date} placeholder")
        if "{crd}" not in self.lookup_url_template:
            raise ValueError("lookup_url_template must contain a {crd} placeholder")
        if self.feed_lookback_days < 0:
            raise ValueError("feed_lookback_days must be >= 0")
        return self


class RunOptions(BaseModel):
    """Per-invocation switches; usually supplied by the command line."""

    index_limit: int | None = None
    max_items: int | None = None
    incremental: bool = False
    baseline_file: Path | None = None
    feed_file: Path | None = None
    force_restart: bool = False
    skip_downloads: bool = False
    resume: bool = True
    validate_pdfs: bool = False
    local_io_failure_threshold: int = 25
    verbose: bool = False

    @field_validator("baseline_file", "feed_file", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path | None:
        if value in (None, ""):
            return None
        return Path(value)

    @model_validator(mode="after")
    def _validate_limits(self) -> "RunOptions":
        if self.index_limit is not None and self.index_limit <= 0:
            raise ValueError("index_limit must be positive")
        if self.max_items is not None and self.max_items <= 0:
            raise ValueError("max_items must be positive")
        if self.local_io_failure_threshold < 0:
            raise ValueError("local_io_failure_threshold must be >= 0")
        return self


class PipelineConfig(BaseModel):
    """Effective configuration for one pipeline run."""

    rate_limits: RateLimitConfig = Field(default_factory=RateLimitConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    endpoints: EndpointConfig = Field(default_factory=EndpointConfig)
    options: RunOptions = Field(default_factory=RunOptions)
    enable_progress_bar: bool = True
    config_source: ConfigSource = "default"


__all__ = [
    "ConfigSource",
    "DEFAULT_USER_AGENT",
    "EndpointConfig",
    "HttpConfig",
    "PipelineConfig",
    "RateLimitConfig",
    "RetryConfig",
    "RunOptions",
]
