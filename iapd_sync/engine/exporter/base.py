"""Exporter Service Provider Interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Mapping


class BaseExporter(ABC):
    """Uniform row sink contract shared by progress, run output and master writers."""

    @abstractmethod
    def export(self, record: Mapping[str, str]) -> None:
        """Persist a single record."""

    @abstractmethod
    def flush(self) -> None:
        """Flush buffered data to destination."""

    @abstractmethod
    def close(self) -> None:
        """Release underlying resources."""

    def __enter__(self) -> "BaseExporter":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()


__all__ = ["BaseExporter"]
