"""Incremental diff of current feed entities against the cumulative baseline."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Generic, Iterable, TypeVar

import structlog

from .exporter.csv_exporter import is_malformed, iter_rows, read_header
from .schema import OUTPUT_FILE_PATTERN

T = TypeVar("T")

ENTITY_ID_ALIASES = ("FirmCrdNb", "firmId", "Firm CRD")
DATE_ALIASES = ("Filing Date", "Filing_Date", "filingDate", "dateSubmitted", "Date Submitted")
ARTIFACT_ALIASES = ("brochureVersionId", "BrochureVersionId", "brochure_version_id")

_DATE_SHAPE = re.compile(r"^\d{2}/\d{2}/\d{4}$")
DATE_FORMAT = "%m/%d/%Y"

logger = structlog.get_logger("iapd_sync.diff")


def parse_marker(value: str | None) -> date | None:
    """Parse an ``MM/DD/YYYY`` version marker; anything else yields ``None``."""

    if value is None:
        return None
    text = value.strip()
    if not _DATE_SHAPE.match(text):
        return None
    try:
        return datetime.strptime(text, DATE_FORMAT).date()
    except ValueError:
        return None


def _pick_column(header: Iterable[str], aliases: tuple[str, ...]) -> str | None:
    columns = set(header)
    for alias in aliases:
        if alias in columns:
            return alias
    return None


class ChangeKind(str, Enum):
    NEW = "new"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass(slots=True)
class BaselineSnapshot:
    """Immutable view of the prior cumulative dataset."""

    source_file: Path | None = None
    markers: dict[str, str] = field(default_factory=dict)
    artifact_keys: frozenset[str] = frozenset()
    max_date_submitted: str | None = None
    total_records: int = 0
    skipped_rows: int = 0

    @property
    def has_data(self) -> bool:
        return self.source_file is not None

    @classmethod
    def empty(cls) -> "BaselineSnapshot":
        return cls()


class BaselineReader:
    """Load and validate a baseline CSV, degrading to an empty baseline on bad shape."""

    def __init__(self, log: structlog.BoundLogger | None = None) -> None:
        self.logger = log or logger.bind(component="baseline")

    def validate(self, path: Path) -> tuple[str, str] | None:
        """Return the ``(entity id, date)`` columns, or ``None`` if the file is unusable."""

        header = read_header(path)
        if not header:
            self.logger.warning("baseline_invalid", path=str(path), reason="missing or empty header")
            return None
        id_column = _pick_column(header, ENTITY_ID_ALIASES)
        date_column = _pick_column(header, DATE_ALIASES)
        if id_column is None or date_column is None:
            self.logger.warning(
                "baseline_invalid",
                path=str(path),
                reason="required columns missing",
                entity_id_column=id_column,
                date_column=date_column,
                header=header,
            )
            return None
        return id_column, date_column

    def load(self, path: Path | None) -> BaselineSnapshot:
        if path is None or not path.exists():
            self.logger.info("baseline_missing", path=str(path) if path else None)
            return BaselineSnapshot.empty()
        columns = self.validate(path)
        if columns is None:
            self.logger.warning("baseline_fallback_full_run", path=str(path))
            return BaselineSnapshot.empty()
        id_column, date_column = columns
        artifact_column = _pick_column(read_header(path) or [], ARTIFACT_ALIASES)

        markers: dict[str, str] = {}
        parsed_markers: dict[str, date] = {}
        artifacts: set[str] = set()
        max_date: date | None = None
        max_text: str | None = None
        total = skipped = 0
        for row in iter_rows(path):
            total += 1
            if is_malformed(row):
                skipped += 1
                self.logger.warning("baseline_row_skipped", path=str(path), row=total)
                continue
            entity_id = (row.get(id_column) or "").strip()
            marker = (row.get(date_column) or "").strip()
            if artifact_column:
                artifact = (row.get(artifact_column) or "").strip()
                if artifact:
                    artifacts.add(artifact)
            if not entity_id:
                continue
            parsed = parse_marker(marker)
            if parsed is None:
                markers.setdefault(entity_id, marker)
                continue
            previous = parsed_markers.get(entity_id)
            if previous is None or parsed > previous:
                parsed_markers[entity_id] = parsed
                markers[entity_id] = marker
            if max_date is None or parsed > max_date:
                max_date, max_text = parsed, marker

        snapshot = BaselineSnapshot(
            source_file=path,
            markers=markers,
            artifact_keys=frozenset(artifacts),
            max_date_submitted=max_text,
            total_records=total,
            skipped_rows=skipped,
        )
        self.logger.info(
            "baseline_loaded",
            path=str(path),
            entities=len(markers),
            artifacts=len(artifacts),
            max_date=max_text,
            total_records=total,
            skipped_rows=skipped,
        )
        return snapshot


def find_latest_output_file(directory: Path) -> Path | None:
    """Newest ``IAPD_Data_YYYYMMDD.csv`` in ``directory`` by the embedded date."""

    if not directory.is_dir():
        return None
    candidates = []
    for path in directory.iterdir():
        match = OUTPUT_FILE_PATTERN.match(path.name)
        if match and path.is_file():
            candidates.append((match.group(1), path))
    if not candidates:
        return None
    return max(candidates)[1]


@dataclass(slots=True)
class DiffResult(Generic[T]):
    to_process: list[T] = field(default_factory=list)
    new: int = 0
    updated: int = 0
    unchanged: int = 0

    @property
    def total(self) -> int:
        return self.new + self.updated + self.unchanged

    def counts(self) -> dict[str, int]:
        return {
            "new": self.new,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "to_process": len(self.to_process),
        }


class IncrementalDiffEngine:
    """Classify entities as New, Updated or Unchanged relative to a baseline."""

    def __init__(self, baseline: BaselineSnapshot, log: structlog.BoundLogger | None = None) -> None:
        self.baseline = baseline
        self.logger = log or logger.bind(component="diff")

    def classify(self, entity_id: str, current_marker: str | None) -> ChangeKind:
        previous = self.baseline.markers.get(entity_id.strip())
        if previous is None:
            return ChangeKind.NEW
        current_date = parse_marker(current_marker)
        previous_date = parse_marker(previous)
        if current_date is None or previous_date is None:
            # unparseable markers never hide a change
            self.logger.debug(
                "diff_marker_unparseable", entity=entity_id, current=current_marker, baseline=previous
            )
            return ChangeKind.UPDATED
        if current_date > previous_date:
            return ChangeKind.UPDATED
        return ChangeKind.UNCHANGED

    def filter(
        self,
        records: Iterable[T],
        entity_id: Callable[[T], str],
        marker: Callable[[T], str | None],
    ) -> DiffResult[T]:
        result: DiffResult[T] = DiffResult()
        for record in records:
            kind = self.classify(entity_id(record), marker(record))
            if kind is ChangeKind.NEW:
                result.new += 1
            elif kind is ChangeKind.UPDATED:
                result.updated += 1
            else:
                result.unchanged += 1
                continue
            result.to_process.append(record)
        self.logger.info("diff_complete", **result.counts())
        return result


__all__ = [
    "ARTIFACT_ALIASES",
    "BaselineReader",
    "BaselineSnapshot",
    "ChangeKind",
    "DATE_ALIASES",
    "DiffResult",
    "ENTITY_ID_ALIASES",
    "IncrementalDiffEngine",
    "find_latest_output_file",
    "parse_marker",
]
