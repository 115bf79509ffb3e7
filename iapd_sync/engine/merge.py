"""Fold a run output file into the cumulative master exactly once per brochure."""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from pathlib import Path

import structlog

from .errors import DataShapeError, LocalIOError
from .exporter.csv_exporter import CsvExporter, count_rows, is_malformed, iter_rows, read_header

KEY_COLUMN = "brochureVersionId"


@dataclass(slots=True)
class MergeResult:
    master_path: Path
    appended: int = 0
    duplicates: int = 0
    keyless: int = 0
    malformed: int = 0
    created: bool = False

    def as_dict(self) -> dict[str, object]:
        return {
            "master": str(self.master_path),
            "appended": self.appended,
            "duplicates": self.duplicates,
            "keyless": self.keyless,
            "malformed": self.malformed,
            "created": self.created,
        }


class MasterMerger:
    """Append-only merge keyed on the brochure version id.

    Existing master rows are never rewritten. Keys are added to the in-memory set
    as rows are appended, so repeats inside a single run output collapse too.
    """

    def __init__(
        self,
        master_path: Path,
        key_column: str = KEY_COLUMN,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.master_path = master_path
        self.key_column = key_column
        self.logger = logger or structlog.get_logger("iapd_sync.merge").bind(master=str(master_path))

    def existing_keys(self) -> set[str]:
        keys: set[str] = set()
        if not self.master_path.exists():
            return keys
        for row in iter_rows(self.master_path):
            if row is None:
                continue
            key = (row.get(self.key_column) or "").strip()
            if key:
                keys.add(key)
        return keys

    def merge(self, run_output: Path) -> MergeResult:
        if not run_output.exists():
            raise LocalIOError(f"Run output {run_output} does not exist")
        if read_header(run_output) is None:
            raise DataShapeError(f"Run output {run_output} has no header")

        result = MergeResult(master_path=self.master_path)
        if not self.master_path.exists() or read_header(self.master_path) is None:
            self._create_from(run_output)
            result.created = True
            result.appended = count_rows(self.master_path)
            self.logger.info("merge_master_created", source=str(run_output), rows=result.appended)
            return result

        seen = self.existing_keys()
        self.logger.info("merge_started", source=str(run_output), existing_keys=len(seen))
        with CsvExporter(self.master_path, read_header(self.master_path) or []) as exporter:
            for position, row in enumerate(iter_rows(run_output)):
                if is_malformed(row):
                    result.malformed += 1
                    self.logger.warning("merge_row_malformed", source=str(run_output), row=position)
                    continue
                key = (row.get(self.key_column) or "").strip()
                if not key:
                    result.keyless += 1
                    self.logger.warning("merge_keyless_row", source=str(run_output), row=position)
                    exporter.export(row)
                    continue
                if key in seen:
                    result.duplicates += 1
                    continue
                exporter.export(row)
                seen.add(key)
                result.appended += 1
        self.logger.info("merge_complete", **result.as_dict())
        return result

    # ------------------------------------------------------------------
    def _create_from(self, run_output: Path) -> None:
        temp_path = self.master_path.with_name(self.master_path.name + ".tmp")
        try:
            self.master_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(run_output, temp_path)
            os.replace(temp_path, self.master_path)
        except OSError as exc:
            raise LocalIOError(f"Cannot create master {self.master_path}: {exc}") from exc


__all__ = ["KEY_COLUMN", "MasterMerger", "MergeResult"]
