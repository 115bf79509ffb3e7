"""Reconstruct the first not-yet-completed unit of work from a progress file."""

from __future__ import annotations

import csv
import os
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Generic, Hashable, Mapping, Sequence, TypeVar

import structlog

from .errors import LocalIOError
from .exporter.csv_exporter import CSV_ENCODING, is_malformed, iter_rows, read_header
from .lookup import BrochureRecord
from .schema import DownloadStatus

T = TypeVar("T")

Row = Mapping[str, str]


class ResumeStatus(str, Enum):
    FULL_RUN = "full_run"
    RESUME = "resume"
    NO_WORK = "no_work"
    NOT_POSSIBLE = "not_possible"


@dataclass(slots=True)
class ResumePoint:
    status: ResumeStatus
    index: int = 0
    completed_rows: int = 0
    total_rows: int = 0
    source_size: int = 0
    last_key: Hashable | None = None
    reason: str = ""
    # rows truncate() keeps; keyed mode drops the owning item's rows to redo it whole
    kept_rows: int = 0

    @property
    def should_process(self) -> bool:
        return self.status is not ResumeStatus.NO_WORK

    @property
    def start_index(self) -> int:
        """Where processing starts; an unusable resume point means a full run."""

        if self.status in (ResumeStatus.RESUME, ResumeStatus.NO_WORK):
            return self.index
        return 0


@dataclass(slots=True)
class ProgressScan:
    completed_rows: int
    total_rows: int
    last_complete: Row | None
    stopped_at: int | None
    # complete rows at the end of the prefix sharing the last complete key
    trailing_run: int = 0


@dataclass(slots=True)
class ResumeStats:
    total: int
    completed: int
    remaining: int
    failed: int
    malformed: int

    def __str__(self) -> str:
        return (
            f"Total: {self.total}, Completed: {self.completed}, Remaining: {self.remaining}, "
            f"Failed: {self.failed}, Malformed: {self.malformed}"
        )


class ResumeLocator(Generic[T]):
    """Locate the resume index for one kind of progress file.

    ``aligned`` locators expect one progress row per source item in source order;
    keyed locators allow several progress rows per source item and resume at
    the source item owning the last complete row, whose rows are redone. In
    both modes the last complete row is matched to the source by natural key,
    and any mismatch or ambiguity fails closed with ``NOT_POSSIBLE``.
    """

    def __init__(
        self,
        name: str,
        required_fields: Sequence[str],
        progress_key: Callable[[Row], Hashable],
        source_key: Callable[[T], Hashable],
        *,
        aligned: bool,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.name = name
        self.required_fields = tuple(required_fields)
        self.progress_key = progress_key
        self.source_key = source_key
        self.aligned = aligned
        self.logger = logger or structlog.get_logger("iapd_sync.resume").bind(locator=name)

    # ------------------------------------------------------------------
    def is_complete(self, row: Row | None) -> bool:
        if is_malformed(row):
            return False
        return all((row.get(field) or "").strip() for field in self.required_fields)

    def scan(self, progress_path: Path) -> ProgressScan:
        completed = 0
        total = 0
        last: Row | None = None
        stopped_at: int | None = None
        run = 0
        for position, row in enumerate(iter_rows(progress_path)):
            total += 1
            if stopped_at is not None:
                continue
            if self.is_complete(row):
                completed += 1
                if last is not None and self.progress_key(row) == self.progress_key(last):
                    run += 1
                else:
                    run = 1
                last = row
            else:
                stopped_at = position
        return ProgressScan(completed, total, last, stopped_at, run)

    def locate(self, source: Sequence[T], progress_path: Path | None) -> ResumePoint:
        size = len(source)
        if progress_path is None or not progress_path.exists() or read_header(progress_path) is None:
            return self._report(ResumePoint(ResumeStatus.FULL_RUN, source_size=size, reason="no progress file"))
        missing = [field for field in self.required_fields if field not in (read_header(progress_path) or [])]
        if missing:
            return self._report(
                ResumePoint(
                    ResumeStatus.NOT_POSSIBLE,
                    source_size=size,
                    reason=f"progress file lacks columns {missing}",
                )
            )

        scan = self.scan(progress_path)
        if scan.completed_rows == 0 or scan.last_complete is None:
            return self._report(
                ResumePoint(
                    ResumeStatus.FULL_RUN,
                    total_rows=scan.total_rows,
                    source_size=size,
                    reason="no complete rows",
                )
            )

        last_key = self.progress_key(scan.last_complete)
        point = ResumePoint(
            ResumeStatus.RESUME,
            completed_rows=scan.completed_rows,
            total_rows=scan.total_rows,
            source_size=size,
            last_key=last_key,
        )
        if self.aligned:
            index = scan.completed_rows
            if index > size:
                point.status = ResumeStatus.NOT_POSSIBLE
                point.reason = f"{index} complete rows but only {size} source items"
                return self._report(point)
            if self.source_key(source[index - 1]) != last_key:
                point.status = ResumeStatus.NOT_POSSIBLE
                point.reason = f"last complete key {last_key!r} does not match source position {index - 1}"
                return self._report(point)
            point.kept_rows = index
        else:
            positions = self._positions(source).get(last_key, [])
            if len(positions) != 1:
                point.status = ResumeStatus.NOT_POSSIBLE
                point.reason = (
                    f"last complete key {last_key!r} not found in source"
                    if not positions
                    else f"last complete key {last_key!r} appears {len(positions)} times in source"
                )
                return self._report(point)
            # the owning item may have been cut off mid fan-out, so it is redone in full
            index = positions[0]
            point.kept_rows = scan.completed_rows - scan.trailing_run

        point.index = index
        if index >= size:
            point.status = ResumeStatus.NO_WORK
            point.reason = "all source items already completed"
        return self._report(point)

    def truncate(self, progress_path: Path, point: ResumePoint) -> int:
        """Drop rows past ``point.kept_rows`` so appends continue the kept prefix.

        Returns the number of rows removed. The file is rewritten through a
        temporary sibling and swapped in with ``os.replace``.
        """

        if point.status is not ResumeStatus.RESUME or point.total_rows <= point.kept_rows:
            return 0
        header = read_header(progress_path) or []
        temp_path = progress_path.with_name(progress_path.name + ".tmp")
        kept = 0
        try:
            with temp_path.open("w", encoding=CSV_ENCODING, newline="") as stream:
                writer = csv.DictWriter(stream, fieldnames=header, extrasaction="ignore", restval="")
                writer.writeheader()
                for row in iter_rows(progress_path):
                    if kept >= point.kept_rows:
                        break
                    writer.writerow({key: value or "" for key, value in row.items() if key is not None})
                    kept += 1
            os.replace(temp_path, progress_path)
        except OSError as exc:
            raise LocalIOError(f"Cannot rewrite progress file {progress_path}: {exc}") from exc
        removed = point.total_rows - kept
        self.logger.info("resume_progress_truncated", path=str(progress_path), kept=kept, removed=removed)
        return removed

    def stats(self, source_size: int, progress_path: Path, status_field: str | None = None) -> ResumeStats:
        completed = failed = malformed = 0
        if progress_path.exists():
            for row in iter_rows(progress_path):
                if is_malformed(row):
                    malformed += 1
                    continue
                if status_field:
                    status = DownloadStatus.parse(row.get(status_field))
                    if status in (DownloadStatus.FAILED, DownloadStatus.ERROR):
                        failed += 1
                        continue
                if self.is_complete(row):
                    completed += 1
        completed = min(completed, source_size)
        return ResumeStats(
            total=source_size,
            completed=completed,
            remaining=max(source_size - completed, 0),
            failed=failed,
            malformed=malformed,
        )

    # ------------------------------------------------------------------
    def _positions(self, source: Sequence[T]) -> dict[Hashable, list[int]]:
        positions: dict[Hashable, list[int]] = defaultdict(list)
        for position, item in enumerate(source):
            positions[self.source_key(item)].append(position)
        return positions

    def _report(self, point: ResumePoint) -> ResumePoint:
        level = "warning" if point.status is ResumeStatus.NOT_POSSIBLE else "info"
        getattr(self.logger, level)(
            "resume_point",
            status=point.status.value,
            index=point.index,
            completed_rows=point.completed_rows,
            total_rows=point.total_rows,
            source_size=point.source_size,
            reason=point.reason,
        )
        return point


# ----------------------------------------------------------------------
# Pipeline instantiations
# ----------------------------------------------------------------------
DOWNLOAD_REQUIRED_FIELDS = ("firmId", "brochureVersionId", "downloadStatus", "fileName")
LOOKUP_REQUIRED_FIELDS = ("firmId", "firmName", "brochureVersionId", "brochureName", "dateSubmitted")


def _brochure_row_key(row: Row) -> tuple[str, str]:
    return ((row.get("firmId") or "").strip(), (row.get("brochureVersionId") or "").strip())


def download_resume_locator() -> ResumeLocator[BrochureRecord]:
    """One progress row per brochure, in FilesToDownload order."""

    return ResumeLocator(
        "downloads",
        DOWNLOAD_REQUIRED_FIELDS,
        progress_key=_brochure_row_key,
        source_key=lambda record: record.key,
        aligned=True,
    )


def lookup_resume_locator(firm_key: Callable[[T], str]) -> ResumeLocator[T]:
    """FilesToDownload rows fan out per firm; the last firm written is looked up again."""

    return ResumeLocator(
        "lookups",
        LOOKUP_REQUIRED_FIELDS,
        progress_key=lambda row: (row.get("firmId") or "").strip(),
        source_key=firm_key,
        aligned=False,
    )


__all__ = [
    "DOWNLOAD_REQUIRED_FIELDS",
    "LOOKUP_REQUIRED_FIELDS",
    "ProgressScan",
    "ResumeLocator",
    "ResumePoint",
    "ResumeStats",
    "ResumeStatus",
    "download_resume_locator",
    "lookup_resume_locator",
]
