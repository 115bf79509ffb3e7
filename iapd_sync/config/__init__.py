"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import (
    EndpointConfig,
    HttpConfig,
    PipelineConfig,
    RateLimitConfig,
    RetryConfig,
    RunOptions,
)

__all__ = [
    "ConfigLocator",
    "ConfigRepository",
    "EndpointConfig",
    "HttpConfig",
    "PipelineConfig",
    "RateLimitConfig",
    "RetryConfig",
    "RunOptions",
]
