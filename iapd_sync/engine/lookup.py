"""Per-firm brochure lookup against the adviser search API."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import structlog

from ..config import EndpointConfig
from .errors import DataShapeError
from .fetcher import FetchRequest, Fetcher
from .schema import BROCHURE_HEADER


@dataclass(slots=True)
class BrochureRecord:
    """A downloadable brochure; ``(firm_id, brochure_version_id)`` is its natural key."""

    firm_id: str
    firm_name: str
    brochure_version_id: str
    brochure_name: str
    date_submitted: str
    date_confirmed: str = ""

    @property
    def key(self) -> tuple[str, str]:
        return (self.firm_id, self.brochure_version_id)

    def to_row(self) -> dict[str, str]:
        return dict(
            zip(
                BROCHURE_HEADER,
                (
                    self.firm_id,
                    self.firm_name,
                    self.brochure_version_id,
                    self.brochure_name,
                    self.date_submitted,
                    self.date_confirmed,
                ),
            )
        )

    @classmethod
    def from_row(cls, row: dict[str, str]) -> "BrochureRecord":
        values = [(row.get(column) or "").strip() for column in BROCHURE_HEADER]
        return cls(*values)


def _text(node: Any, key: str) -> str:
    if not isinstance(node, dict):
        return ""
    value = node.get(key)
    if value is None:
        return ""
    return str(value).strip()


def parse_lookup_response(payload: Any, firm_crd: str, firm_name: str = "") -> list[BrochureRecord]:
    """Extract brochures from the ``hits.hits[0]._source.iacontent`` envelope.

    ``iacontent`` is itself a JSON document serialised as a string. An empty hit list
    is a valid "no brochures" answer; a structurally broken envelope raises
    :class:`DataShapeError`.
    """

    if not isinstance(payload, dict):
        raise DataShapeError(f"Lookup response for {firm_crd} is not an object")
    envelope = payload.get("hits") or {}
    hits = envelope.get("hits") if isinstance(envelope, dict) else None
    hits = hits or []
    if not isinstance(hits, list):
        raise DataShapeError(f"Lookup response for {firm_crd} has malformed hits")
    if not hits:
        return []
    source = hits[0].get("_source") if isinstance(hits[0], dict) else None
    raw_content = _text(source, "iacontent")
    if not raw_content:
        return []
    try:
        content = json.loads(raw_content)
    except json.JSONDecodeError as exc:
        raise DataShapeError(f"iacontent for {firm_crd} is not valid JSON: {exc}") from exc
    if not isinstance(content, dict):
        raise DataShapeError(f"iacontent for {firm_crd} is not an object")

    basic = content.get("basicInformation") or {}
    firm_id = _text(basic, "firmId") or firm_crd
    name = _text(basic, "firmName") or firm_name
    brochures = content.get("brochures")
    details = brochures.get("brochuredetails") if isinstance(brochures, dict) else None
    if not isinstance(details, list):
        details = []

    records: list[BrochureRecord] = []
    for detail in details:
        version_id = _text(detail, "brochureVersionID")
        brochure_name = _text(detail, "brochureName")
        submitted = _text(detail, "dateSubmitted")
        if not (version_id and brochure_name and submitted):
            continue
        records.append(
            BrochureRecord(
                firm_id=firm_id,
                firm_name=name,
                brochure_version_id=version_id,
                brochure_name=brochure_name,
                date_submitted=submitted,
                date_confirmed=_text(detail, "lastConfirmed"),
            )
        )
    return records


class BrochureLookup:
    """Resolve a firm's current brochures through the throttled fetcher."""

    def __init__(
        self,
        fetcher: Fetcher,
        endpoints: EndpointConfig,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.endpoints = endpoints
        self.logger = logger or structlog.get_logger("iapd_sync.lookup").bind(component="lookup")

    def url_for(self, firm_crd: str) -> str:
        return self.endpoints.lookup_url_template.format(crd=firm_crd)

    def lookup(self, firm_crd: str, firm_name: str = "") -> list[BrochureRecord]:
        response = self.fetcher.fetch(
            FetchRequest(url=self.url_for(firm_crd), name=f"lookup:{firm_crd}")
        )
        if not response.text.strip():
            self.logger.warning("lookup_empty_body", firm=firm_crd)
            return []
        try:
            payload = json.loads(response.text)
        except json.JSONDecodeError as exc:
            raise DataShapeError(f"Lookup response for {firm_crd} is not JSON: {exc}") from exc
        records = parse_lookup_response(payload, firm_crd, firm_name)
        self.logger.debug("lookup_complete", firm=firm_crd, brochures=len(records))
        return records


__all__ = ["BrochureLookup", "BrochureRecord", "parse_lookup_response"]
