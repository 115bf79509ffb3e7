from __future__ import annotations

import gzip
from datetime import date
from pathlib import Path

import httpx
import pytest

from iapd_sync.config import EndpointConfig
from iapd_sync.engine.errors import DataShapeError
from iapd_sync.engine.feed import FeedRetriever, FirmRecord, feed_candidates, gunzip, iter_firms
from iapd_sync.engine.fetcher import Fetcher
from iapd_sync.engine.retry import RetryExecutor, RetryPolicy
from iapd_sync.engine.schema import FIRM_HEADER


def test_iter_firms_maps_attributes(sample_feed: Path) -> None:
    firms = list(iter_firms(sample_feed))
    assert [firm.firm_crd_nb for firm in firms] == ["12345", "67890", "55555"]
    alpha = firms[0]
    assert alpha.business_name == "ALPHA ADVISERS"
    assert alpha.city == "New York"
    assert alpha.filing_date == "01/15/2024"
    assert alpha.total_employees == "12"
    assert alpha.aum == "1000000"
    assert alpha.total_accounts == "42"
    assert alpha.registration_state == "APPROVED"
    assert firms[1].street1 == ""


def test_iter_firms_honours_index_limit(sample_feed: Path) -> None:
    assert len(list(iter_firms(sample_feed, index_limit=2))) == 2


def test_iter_firms_stops_on_request(sample_feed: Path) -> None:
    firms = list(iter_firms(sample_feed, should_stop=lambda: True))
    assert len(firms) == 1


def test_iter_firms_rejects_malformed_xml(tmp_path: Path) -> None:
    path = tmp_path / "broken.xml"
    path.write_text("<Firms><Firm><Info FirmCrdNb='1'></Firms>", encoding="ISO-8859-1")
    with pytest.raises(DataShapeError):
        list(iter_firms(path))


def test_firm_row_strips_quotes_and_round_trips(sample_feed: Path) -> None:
    beta = list(iter_firms(sample_feed))[1]
    row = beta.to_row("01/16/2024")
    assert list(row) == list(FIRM_HEADER)
    assert row["dateAdded"] == "01/16/2024"
    assert row["Business Name"] == "BETA CAPITAL"
    assert FirmRecord.from_row(row).firm_crd_nb == "67890"


def test_feed_candidates_look_back() -> None:
    candidates = feed_candidates(EndpointConfig(feed_lookback_days=2), date(2024, 1, 16))
    assert [day for day, _ in candidates] == [date(2024, 1, 16), date(2024, 1, 15), date(2024, 1, 14)]
    assert candidates[0][1].endswith("IA_FIRM_SEC_Feed_01_16_2024.xml.gz")


def test_gunzip_rejects_corrupt_archive(tmp_path: Path) -> None:
    archive = tmp_path / "feed.xml.gz"
    archive.write_bytes(b"not gzip at all")
    with pytest.raises(DataShapeError):
        gunzip(archive, tmp_path / "feed.xml")


def test_retriever_falls_back_to_previous_day(tmp_path: Path, sample_feed: Path, sleeper) -> None:
    archive_bytes = gzip.compress(sample_feed.read_bytes())
    requested: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        if "01_16_2024" in str(request.url):
            return httpx.Response(404)
        return httpx.Response(200, content=archive_bytes)

    fetcher = Fetcher(
        retry=RetryExecutor(RetryPolicy(max_retries=0), sleeper=sleeper),
        transport=httpx.MockTransport(handler),
    )
    retriever = FeedRetriever(fetcher, EndpointConfig(), tmp_path / "Downloads")
    xml_path = retriever.retrieve(date(2024, 1, 16))
    fetcher.close()
    assert xml_path is not None
    assert xml_path.name == "IA_FIRM_SEC_Feed_01_15_2024.xml"
    assert len(requested) == 2
    assert len(list(iter_firms(xml_path))) == 3


def test_retriever_gives_up_after_look_back(tmp_path: Path, sleeper) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    fetcher = Fetcher(
        retry=RetryExecutor(RetryPolicy(max_retries=0), sleeper=sleeper),
        transport=httpx.MockTransport(handler),
    )
    retriever = FeedRetriever(fetcher, EndpointConfig(feed_lookback_days=1), tmp_path)
    assert retriever.retrieve(date(2024, 1, 16)) is None
    fetcher.close()
