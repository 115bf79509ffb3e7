"""Append-only CSV exporter plus the tolerant readers used across stages."""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterator, Mapping, Sequence

import structlog

from ..errors import LocalIOError
from .base import BaseExporter

CSV_ENCODING = "utf-8"


def read_header(path: Path) -> list[str] | None:
    """First row of ``path``, or ``None`` for a missing/empty file."""

    if not path.exists():
        return None
    with path.open("r", encoding=CSV_ENCODING, newline="", errors="replace") as stream:
        reader = csv.reader(stream)
        try:
            header = next(reader)
        except StopIteration:
            return None
        except csv.Error:
            return None
    header = [column.strip().lstrip("﻿") for column in header]
    return header or None


def iter_rows(path: Path) -> Iterator[dict[str, str] | None]:
    """Yield data rows as dicts; ``None`` marks a row the csv module could not parse.

    Rows with more fields than the header carry the surplus under the ``None`` key
    and short rows carry ``None`` values, see :func:`is_malformed`.
    """

    with path.open("r", encoding=CSV_ENCODING, newline="", errors="replace") as stream:
        reader = csv.reader(stream)
        try:
            header = [column.strip().lstrip("﻿") for column in next(reader)]
        except (StopIteration, csv.Error):
            return
        while True:
            try:
                values = next(reader)
            except StopIteration:
                return
            except csv.Error:
                yield None
                continue
            if not values:
                continue
            row: dict = dict(zip(header, values))
            if len(values) > len(header):
                row[None] = values[len(header):]
            for column in header[len(values):]:
                row[column] = None
            yield row


def is_malformed(row: Mapping | None) -> bool:
    if row is None:
        return True
    if None in row:
        return True
    return any(value is None for value in row.values())


def count_rows(path: Path) -> int:
    if not path.exists():
        return 0
    return sum(1 for _ in iter_rows(path))


class CsvExporter(BaseExporter):
    """Append rows to a CSV file, writing the header only when the file is new.

    With ``durable`` set every row is flushed immediately so an interrupted run
    loses at most the row being written.
    """

    def __init__(self, path: Path, fieldnames: Sequence[str], *, durable: bool = True) -> None:
        self.path = path
        self.durable = durable
        self.logger = structlog.get_logger("iapd_sync.exporter").bind(path=str(path))
        existing = read_header(path)
        if existing and list(existing) != list(fieldnames):
            self.logger.warning("exporter_header_mismatch", expected=list(fieldnames), found=existing)
            self.fieldnames = list(existing)
        else:
            self.fieldnames = list(fieldnames)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            self._file = path.open("a", encoding=CSV_ENCODING, newline="")
            self._needs_newline = self._missing_trailing_newline(path) if existing else False
            self._writer = csv.DictWriter(
                self._file, fieldnames=self.fieldnames, extrasaction="ignore", restval=""
            )
            if not existing:
                self._writer.writeheader()
                self._file.flush()
        except OSError as exc:
            raise LocalIOError(f"Cannot open {path} for append: {exc}") from exc
        self.written = 0

    @staticmethod
    def _missing_trailing_newline(path: Path) -> bool:
        with path.open("rb") as stream:
            stream.seek(0, 2)
            if stream.tell() == 0:
                return False
            stream.seek(-1, 2)
            return stream.read(1) not in (b"\n", b"\r")

    def export(self, record: Mapping[str, str]) -> None:
        try:
            if self._needs_newline:
                # a previous run died mid-row; keep the torn row on its own line
                self._file.write("\r\n")
                self._needs_newline = False
            self._writer.writerow({key: ("" if value is None else value) for key, value in record.items()})
            if self.durable:
                self._file.flush()
        except OSError as exc:
            raise LocalIOError(f"Cannot append to {self.path}: {exc}") from exc
        self.written += 1

    def flush(self) -> None:
        try:
            self._file.flush()
        except OSError as exc:
            raise LocalIOError(f"Cannot flush {self.path}: {exc}") from exc

    def close(self) -> None:
        if not self._file.closed:
            self._file.close()


__all__ = ["CSV_ENCODING", "CsvExporter", "count_rows", "is_malformed", "iter_rows", "read_header"]
