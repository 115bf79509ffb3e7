"""Per-brochure document download with an outcome per unit of work."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import structlog

from ..config import EndpointConfig
from .errors import DataShapeError, ErrorCategory, LocalIOError, PipelineError
from .fetcher import Fetcher
from .lookup import BrochureRecord
from .schema import DownloadStatus, brochure_file_name

PDF_MAGIC = b"%PDF"
MIN_PDF_SIZE = 1024


def validate_pdf(path: Path) -> bool:
    """A usable brochure is at least 1 KiB and starts with the PDF magic bytes."""

    try:
        if not path.is_file() or path.stat().st_size < MIN_PDF_SIZE:
            return False
        with path.open("rb") as stream:
            return stream.read(len(PDF_MAGIC)) == PDF_MAGIC
    except OSError as exc:
        raise LocalIOError(f"Cannot inspect {path}: {exc}") from exc


@dataclass(slots=True)
class DownloadOutcome:
    status: DownloadStatus
    file_name: str = ""
    detail: str = ""
    category: ErrorCategory | None = None

    @property
    def token(self) -> str:
        return self.status.token(self.detail)

    @property
    def failed(self) -> bool:
        return self.status in (DownloadStatus.FAILED, DownloadStatus.ERROR)


class BrochureDownloader:
    """Fetch one brochure into the downloads directory.

    Failures never escape :meth:`download`; they are folded into the returned
    :class:`DownloadOutcome` together with their error category so the caller can
    record the row and keep going.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        endpoints: EndpointConfig,
        target_dir: Path,
        *,
        validate_pdfs: bool = False,
        skip_downloads: bool = False,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.endpoints = endpoints
        self.target_dir = target_dir
        self.validate_pdfs = validate_pdfs
        self.skip_downloads = skip_downloads
        self.logger = logger or structlog.get_logger("iapd_sync.downloader").bind(component="downloader")

    def url_for(self, version_id: str) -> str:
        return f"{self.endpoints.brochure_url_prefix}{version_id}"

    def download(self, record: BrochureRecord) -> DownloadOutcome:
        if not record.brochure_version_id:
            return DownloadOutcome(DownloadStatus.NO_VERSION_ID)
        if self.skip_downloads:
            return DownloadOutcome(DownloadStatus.SKIPPED)

        file_name = brochure_file_name(record.firm_id, record.brochure_version_id)
        destination = self.target_dir / file_name
        try:
            if self.validate_pdfs and validate_pdf(destination):
                self.logger.debug("download_already_present", file=file_name)
                return DownloadOutcome(DownloadStatus.SKIPPED, file_name=file_name)
            self.fetcher.download(
                self.url_for(record.brochure_version_id),
                destination,
                name=f"brochure:{record.firm_id}:{record.brochure_version_id}",
            )
            if self.validate_pdfs and not validate_pdf(destination):
                destination.unlink()
                raise DataShapeError(f"{file_name} is not a valid PDF")
        except PipelineError as exc:
            self.logger.warning(
                "download_failed",
                firm=record.firm_id,
                version=record.brochure_version_id,
                category=exc.category.value,
                error=str(exc),
            )
            return DownloadOutcome(DownloadStatus.FAILED, detail=str(exc), category=exc.category)
        except OSError as exc:
            self.logger.warning("download_failed", firm=record.firm_id, error=str(exc))
            return DownloadOutcome(DownloadStatus.FAILED, detail=str(exc), category=ErrorCategory.LOCAL_IO)
        except Exception as exc:  # noqa: BLE001
            self.logger.exception("download_error", firm=record.firm_id, version=record.brochure_version_id)
            return DownloadOutcome(DownloadStatus.ERROR, detail=str(exc), category=ErrorCategory.TERMINAL)
        return DownloadOutcome(DownloadStatus.SUCCESS, file_name=file_name)


__all__ = ["BrochureDownloader", "DownloadOutcome", "MIN_PDF_SIZE", "validate_pdf"]
