"""Resumable, rate-limited incremental sync of the SEC IAPD adviser feed."""

__version__ = "0.3.0"

__all__ = ["__version__"]
