from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest

from iapd_sync.engine.diff import (
    BaselineReader,
    BaselineSnapshot,
    ChangeKind,
    IncrementalDiffEngine,
    find_latest_output_file,
    parse_marker,
)
from iapd_sync.engine.feed import FirmRecord


def engine_for(markers: dict[str, str]) -> IncrementalDiffEngine:
    return IncrementalDiffEngine(BaselineSnapshot(source_file=Path("baseline.csv"), markers=markers))


def test_scenario_new_and_updated() -> None:
    engine = engine_for({"12345": "01/10/2024"})
    firms = [
        FirmRecord(firm_crd_nb="12345", filing_date="01/15/2024"),
        FirmRecord(firm_crd_nb="67890", filing_date="02/01/2024"),
    ]
    result = engine.filter(firms, lambda f: f.entity_id, lambda f: f.version_marker)
    assert result.counts() == {"new": 1, "updated": 1, "unchanged": 0, "to_process": 2}
    assert [f.firm_crd_nb for f in result.to_process] == ["12345", "67890"]


@pytest.mark.parametrize(
    ("baseline", "current", "expected"),
    [
        ("01/01/2024", "01/15/2024", ChangeKind.UPDATED),
        ("01/15/2024", "01/15/2024", ChangeKind.UNCHANGED),
        ("01/15/2024", "01/01/2024", ChangeKind.UNCHANGED),
        ("01/15/2024", "2024-01-20", ChangeKind.UPDATED),
        ("garbage", "01/15/2024", ChangeKind.UPDATED),
        ("01/15/2024", "", ChangeKind.UPDATED),
        ("01/15/2024", None, ChangeKind.UPDATED),
    ],
)
def test_classify_markers(baseline: str, current: str | None, expected: ChangeKind) -> None:
    assert engine_for({"1": baseline}).classify("1", current) is expected


def test_absent_entity_is_new() -> None:
    assert engine_for({}).classify("999", "01/01/2024") is ChangeKind.NEW


def test_unchanged_entities_are_dropped_in_order() -> None:
    engine = engine_for({"a": "01/01/2024", "b": "01/01/2024"})
    records = [("c", "01/01/2024"), ("a", "01/01/2024"), ("b", "02/01/2024")]
    result = engine.filter(records, lambda r: r[0], lambda r: r[1])
    assert [r[0] for r in result.to_process] == ["c", "b"]
    assert (result.new, result.updated, result.unchanged) == (1, 1, 1)
    assert result.total == 3


def test_parse_marker_is_strict() -> None:
    assert parse_marker("01/15/2024") == date(2024, 1, 15)
    assert parse_marker(" 01/15/2024 ") == date(2024, 1, 15)
    assert parse_marker("1/15/2024") is None
    assert parse_marker("13/45/2024") is None
    assert parse_marker(None) is None


def test_baseline_reader_keeps_latest_marker(tmp_path: Path, write_csv) -> None:
    path = write_csv(
        tmp_path / "IAPD_Data.csv",
        ["FirmCrdNb", "Filing Date", "brochureVersionId"],
        [
            ["12345", "01/01/2024", "BR001"],
            ["12345", "03/01/2024", "BR002"],
            ["12345", "02/01/2024", "BR003"],
            ["67890", "n/a", ""],
        ],
    )
    snapshot = BaselineReader().load(path)
    assert snapshot.has_data
    assert snapshot.markers == {"12345": "03/01/2024", "67890": "n/a"}
    assert snapshot.artifact_keys == frozenset({"BR001", "BR002", "BR003"})
    assert snapshot.max_date_submitted == "03/01/2024"
    assert snapshot.total_records == 4


def test_baseline_reader_accepts_aliases(tmp_path: Path, write_csv) -> None:
    path = write_csv(
        tmp_path / "baseline.csv",
        ["firmId", "dateSubmitted", "brochure_version_id"],
        [["1", "01/02/2024", "X"]],
    )
    snapshot = BaselineReader().load(path)
    assert snapshot.markers == {"1": "01/02/2024"}
    assert snapshot.artifact_keys == frozenset({"X"})


def test_invalid_baseline_degrades_to_full_run(tmp_path: Path, write_csv) -> None:
    path = write_csv(tmp_path / "baseline.csv", ["Something", "Else"], [["1", "2"]])
    snapshot = BaselineReader().load(path)
    assert not snapshot.has_data
    assert engine_for(snapshot.markers).classify("1", "01/01/2024") is ChangeKind.NEW


def test_missing_baseline_is_empty(tmp_path: Path) -> None:
    assert not BaselineReader().load(tmp_path / "nope.csv").has_data
    assert not BaselineReader().load(None).has_data


def test_malformed_rows_are_skipped(tmp_path: Path, write_csv) -> None:
    path = write_csv(tmp_path / "baseline.csv", ["FirmCrdNb", "Filing Date"], [["1", "01/01/2024"], ["2"]])
    snapshot = BaselineReader().load(path)
    assert snapshot.markers == {"1": "01/01/2024"}
    assert snapshot.skipped_rows == 1


def test_find_latest_output_file(tmp_path: Path) -> None:
    for name in ("IAPD_Data_20240101.csv", "IAPD_Data_20240301.csv", "IAPD_Data_20240201.csv",
                 "IAPD_Data.csv", "IAPD_Data_20240401_incremental.csv", "notes.txt"):
        (tmp_path / name).write_text("x", encoding="utf-8")
    assert find_latest_output_file(tmp_path).name == "IAPD_Data_20240301.csv"
    assert find_latest_output_file(tmp_path / "missing") is None
