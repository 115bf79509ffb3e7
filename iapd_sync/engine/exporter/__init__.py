"""Exporter SPI and implementations."""

from .base import BaseExporter
from .csv_exporter import CsvExporter, count_rows, is_malformed, iter_rows, read_header

__all__ = ["BaseExporter", "CsvExporter", "count_rows", "is_malformed", "iter_rows", "read_header"]
