"""Feed retrieval and streaming parse of the IAPD firm XML compilation."""

from __future__ import annotations

import gzip
import shutil
from dataclasses import asdict, dataclass
from datetime import date, timedelta
from pathlib import Path
from typing import Callable, Iterator

import structlog
from lxml import etree

from ..config import EndpointConfig
from .errors import DataShapeError, HttpStatusError, LocalIOError, TransientNetworkError
from .fetcher import Fetcher
from .schema import FIRM_HEADER

FEED_ENCODING = "ISO-8859-1"
FEED_DATE_FORMAT = "%m_%d_%Y"
CSV_DATE_FORMAT = "%m/%d/%Y"


@dataclass(slots=True)
class FirmRecord:
    """One firm as read from the feed; ``firm_crd_nb`` is the natural id."""

    sec_region: str = ""
    firm_crd_nb: str = ""
    sec_number: str = ""
    business_name: str = ""
    legal_name: str = ""
    street1: str = ""
    street2: str = ""
    city: str = ""
    state: str = ""
    country: str = ""
    postal_code: str = ""
    phone: str = ""
    fax: str = ""
    firm_type: str = ""
    registration_state: str = ""
    registration_date: str = ""
    filing_date: str = ""
    form_version: str = ""
    total_employees: str = ""
    aum: str = ""
    total_accounts: str = ""
    brochure_url: str = ""

    @property
    def entity_id(self) -> str:
        return self.firm_crd_nb

    @property
    def version_marker(self) -> str:
        return self.filing_date

    def to_row(self, date_added: str) -> dict[str, str]:
        values = [date_added] + [_strip_quotes(value) for value in asdict(self).values()]
        return dict(zip(FIRM_HEADER, values))

    @classmethod
    def from_row(cls, row: dict[str, str]) -> "FirmRecord":
        values = [row.get(column) or "" for column in FIRM_HEADER[1:]]
        return cls(*values)


# element -> ((xml attribute, FirmRecord field), ...)
_ATTRIBUTE_MAP: dict[str, tuple[tuple[str, str], ...]] = {
    "Info": (
        ("SECRgnCD", "sec_region"),
        ("FirmCrdNb", "firm_crd_nb"),
        ("SECNb", "sec_number"),
        ("BusNm", "business_name"),
        ("LegalNm", "legal_name"),
    ),
    "Rgstn": (("FirmType", "firm_type"), ("St", "registration_state"), ("Dt", "registration_date")),
    "Filing": (("Dt", "filing_date"), ("FormVrsn", "form_version")),
    "MainAddr": (
        ("Strt1", "street1"),
        ("Strt2", "street2"),
        ("City", "city"),
        ("State", "state"),
        ("Cntry", "country"),
        ("PostlCd", "postal_code"),
        ("PhNb", "phone"),
        ("FaxNb", "fax"),
    ),
    "Item5A": (("TtlEmp", "total_employees"),),
    "Item5F": (("Q5F2C", "aum"), ("Q5F2F", "total_accounts")),
}


def _strip_quotes(value: str) -> str:
    return value.replace('"', "") if value else ""


def _local_name(tag: object) -> str:
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1]


def _build_record(element: etree._Element) -> FirmRecord:
    record = FirmRecord()
    for child in element.iter():
        mapping = _ATTRIBUTE_MAP.get(_local_name(child.tag))
        if not mapping:
            continue
        for attribute, field_name in mapping:
            setattr(record, field_name, child.get(attribute) or "")
    return record


def iter_firms(
    xml_path: Path,
    *,
    index_limit: int | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> Iterator[FirmRecord]:
    """Stream ``<Firm>`` elements as records without loading the document.

    Parsed elements are cleared as soon as they are converted so memory stays flat.
    """

    logger = structlog.get_logger("iapd_sync.feed")
    produced = 0
    try:
        context = etree.iterparse(str(xml_path), events=("end",), encoding=FEED_ENCODING, huge_tree=True)
        for _event, element in context:
            if _local_name(element.tag) != "Firm":
                continue
            record = _build_record(element)
            element.clear()
            while element.getprevious() is not None:
                del element.getparent()[0]
            if not record.firm_crd_nb:
                logger.warning("feed_firm_without_id", position=produced)
                continue
            yield record
            produced += 1
            if index_limit is not None and produced >= index_limit:
                logger.info("feed_index_limit_reached", limit=index_limit)
                return
            if should_stop is not None and should_stop():
                logger.info("feed_stop_requested", produced=produced)
                return
    except etree.XMLSyntaxError as exc:
        raise DataShapeError(f"Malformed feed document {xml_path}: {exc}") from exc
    except OSError as exc:
        raise LocalIOError(f"Cannot read feed {xml_path}: {exc}") from exc


def feed_candidates(endpoints: EndpointConfig, today: date | None = None) -> list[tuple[date, str]]:
    """Feed URLs for today and the configured look-back days, newest first."""

    anchor = today or date.today()
    candidates = []
    for offset in range(endpoints.feed_lookback_days + 1):
        day = anchor - timedelta(days=offset)
        url = endpoints.feed_url_template.format(date=day.strftime(FEED_DATE_FORMAT))
        candidates.append((day, url))
    return candidates


def gunzip(archive: Path, target: Path) -> Path:
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with gzip.open(archive, "rb") as source, target.open("wb") as sink:
            shutil.copyfileobj(source, sink)
    except (gzip.BadGzipFile, EOFError) as exc:
        raise DataShapeError(f"Corrupt feed archive {archive}: {exc}") from exc
    except OSError as exc:
        raise LocalIOError(f"Cannot extract {archive}: {exc}") from exc
    return target


class FeedRetriever:
    """Locate and download the most recent published feed."""

    def __init__(
        self,
        fetcher: Fetcher,
        endpoints: EndpointConfig,
        downloads_dir: Path,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.endpoints = endpoints
        self.downloads_dir = downloads_dir
        self.logger = logger or structlog.get_logger("iapd_sync.feed").bind(component="feed")

    def retrieve(self, today: date | None = None) -> Path | None:
        """Return the extracted XML path, or ``None`` when no recent feed exists."""

        for day, url in feed_candidates(self.endpoints, today):
            archive = self.downloads_dir / url.rsplit("/", 1)[-1]
            if archive.exists():
                # downloads land via .part + rename, so an existing archive is complete
                self.logger.info("feed_cached", day=day.isoformat(), path=str(archive))
                return gunzip(archive, archive.with_suffix(""))
            try:
                self.fetcher.download(
                    url, archive, timeout=self.fetcher.feed_timeout(), name="feed_download"
                )
            except HttpStatusError as exc:
                self.logger.info("feed_not_published", day=day.isoformat(), status=exc.status_code)
                continue
            except TransientNetworkError as exc:
                self.logger.warning("feed_download_failed", day=day.isoformat(), error=str(exc))
                continue
            xml_path = archive.with_suffix("")
            gunzip(archive, xml_path)
            self.logger.info("feed_ready", day=day.isoformat(), path=str(xml_path))
            return xml_path
        self.logger.error("feed_unavailable", lookback_days=self.endpoints.feed_lookback_days)
        return None


__all__ = [
    "CSV_DATE_FORMAT",
    "FeedRetriever",
    "FirmRecord",
    "feed_candidates",
    "gunzip",
    "iter_firms",
]
