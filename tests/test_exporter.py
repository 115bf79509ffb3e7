from pathlib import Path

from iapd_sync.engine.analyzer import BrochureAnalyzer, NullAnalyzer, analysis_columns
from iapd_sync.engine.exporter import CsvExporter, count_rows, is_malformed, iter_rows, read_header
from iapd_sync.engine.schema import ANALYSIS_COLUMNS


def test_csv_exporter_writes_header_once(tmp_path: Path) -> None:
    path = tmp_path / "out.csv"
    with CsvExporter(path, ["a", "b"]) as exporter:
        exporter.export({"a": "1", "b": "2"})
    with CsvExporter(path, ["a", "b"]) as exporter:
        exporter.export({"a": "3", "b": None})
        assert exporter.written == 1
    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines == ["a,b", "1,2", "3,"]


def test_csv_exporter_adopts_existing_header(tmp_path: Path) -> None:
    path = tmp_path / "out.csv"
    path.write_text("b,a\r\n", encoding="utf-8")
    with CsvExporter(path, ["a", "b"]) as exporter:
        exporter.export({"a": "1", "b": "2", "c": "ignored"})
    assert path.read_text(encoding="utf-8").splitlines() == ["b,a", "2,1"]


def test_csv_exporter_isolates_torn_last_row(tmp_path: Path) -> None:
    path = tmp_path / "out.csv"
    path.write_text("a,b\r\n1,2\r\n3", encoding="utf-8")
    with CsvExporter(path, ["a", "b"]) as exporter:
        exporter.export({"a": "4", "b": "5"})
    rows = list(iter_rows(path))
    assert rows[0] == {"a": "1", "b": "2"}
    assert is_malformed(rows[1])
    assert rows[2] == {"a": "4", "b": "5"}
    assert count_rows(path) == 3


def test_readers_handle_missing_and_surplus(tmp_path: Path) -> None:
    assert read_header(tmp_path / "missing.csv") is None
    path = tmp_path / "wide.csv"
    path.write_text("a,b\r\n1,2,3\r\n", encoding="utf-8")
    (row,) = list(iter_rows(path))
    assert is_malformed(row)
    assert row[None] == ["3"]


def test_null_analyzer_yields_blank_tag_columns(tmp_path: Path) -> None:
    analyzer = NullAnalyzer()
    assert isinstance(analyzer, BrochureAnalyzer)
    tags = analysis_columns(analyzer.analyze(tmp_path / "doc.pdf"))
    assert list(tags) == list(ANALYSIS_COLUMNS)
    assert set(tags.values()) == {""}
    assert analysis_columns({"ESG Provider": "MSCI"})["ESG Provider"] == "MSCI"
