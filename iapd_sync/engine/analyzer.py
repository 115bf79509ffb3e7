"""Pluggable brochure classification."""

from __future__ import annotations

from pathlib import Path
from typing import Mapping, Protocol, runtime_checkable

from .schema import ANALYSIS_COLUMNS


@runtime_checkable
class BrochureAnalyzer(Protocol):
    """Turn a downloaded brochure into tag columns keyed by ``ANALYSIS_COLUMNS`` names."""

    def analyze(self, path: Path) -> Mapping[str, str]:
        ...


class NullAnalyzer:
    """Default analyzer: no text extraction, no tags."""

    def analyze(self, path: Path) -> Mapping[str, str]:
        return {}


def analysis_columns(tags: Mapping[str, str]) -> dict[str, str]:
    """Project analyzer output onto the fixed tag columns, blank where absent."""

    return {column: (tags.get(column) or "") for column in ANALYSIS_COLUMNS}


__all__ = ["BrochureAnalyzer", "NullAnalyzer", "analysis_columns"]
