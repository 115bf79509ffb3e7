"""CSV layouts, status tokens and run file naming shared by the pipeline stages."""

from __future__ import annotations

import re
from datetime import date
from enum import Enum
from pathlib import Path

FIRM_HEADER: tuple[str, ...] = (
    "dateAdded",
    "SECRgmCD",
    "FirmCrdNb",
    "SECMb",
    "Business Name",
    "Legal Name",
    "Street 1",
    "Street 2",
    "City",
    "State",
    "Country",
    "Postal Code",
    "Telephone #",
    "Fax #",
    "Registration Firm Type",
    "Registration State",
    "Registration Date",
    "Filing Date",
    "Filing Version",
    "Total Employees",
    "AUM",
    "Total Accounts",
    "BrochureURL",
)

BROCHURE_HEADER: tuple[str, ...] = (
    "firmId",
    "firmName",
    "brochureVersionId",
    "brochureName",
    "dateSubmitted",
    "dateConfirmed",
)

PROGRESS_HEADER: tuple[str, ...] = BROCHURE_HEADER + ("downloadStatus", "fileName")

ANALYSIS_COLUMNS: tuple[str, ...] = (
    "Proxy Provider",
    "Class Action Provider",
    "ESG Provider",
    "ESG Investment Language",
    "Email -- Compliance",
    "Email -- Proxy",
    "Email -- Brochure",
    "Email -- Item 17",
    "Email -- All",
    "Does Not Vote String",
)

IAPD_DATA_HEADER: tuple[str, ...] = (
    FIRM_HEADER
    + ("brochureVersionId", "brochureName", "dateSubmitted", "dateConfirmed", "File Name")
    + ANALYSIS_COLUMNS
)

MASTER_FILE_NAME = "IAPD_Data.csv"
OUTPUT_BASE_NAME = "IAPD_Data"
OUTPUT_FILE_PATTERN = re.compile(r"^IAPD_Data_(\d{8})\.csv$")


class DownloadStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    ERROR = "ERROR"
    SKIPPED = "SKIPPED"
    NO_VERSION_ID = "NO_VERSION_ID"

    def token(self, detail: str | None = None) -> str:
        """Render the status column value, e.g. ``FAILED: HTTP 404``."""

        if detail and self in (DownloadStatus.FAILED, DownloadStatus.ERROR):
            return f"{self.value}: {detail}"
        return self.value

    @classmethod
    def parse(cls, token: str | None) -> "DownloadStatus | None":
        text = (token or "").strip().upper()
        if not text:
            return None
        head = text.split(":", 1)[0].strip()
        try:
            return cls(head)
        except ValueError:
            return None


def run_stamp(day: date | None = None) -> str:
    return (day or date.today()).strftime("%Y%m%d")


def firm_data_name(stamp: str) -> str:
    return f"IA_FIRM_SEC_DATA_{stamp}.csv"


def files_to_download_name(stamp: str) -> str:
    return f"FilesToDownload_{stamp}.csv"


def progress_name(stamp: str) -> str:
    return f"FilesToDownload_{stamp}_with_status.csv"


def run_output_name(stamp: str) -> str:
    return f"{OUTPUT_BASE_NAME}_{stamp}.csv"


def incremental_name(base: Path, stamp: str) -> Path:
    """``IAPD_Data.csv`` -> ``IAPD_Data_<stamp>_incremental.csv`` beside it."""

    return base.with_name(f"{base.stem}_{stamp}_incremental{base.suffix or '.csv'}")


def brochure_file_name(firm_id: str, version_id: str) -> str:
    return f"{firm_id}_{version_id}.pdf"


__all__ = [
    "ANALYSIS_COLUMNS",
    "BROCHURE_HEADER",
    "DownloadStatus",
    "FIRM_HEADER",
    "IAPD_DATA_HEADER",
    "MASTER_FILE_NAME",
    "OUTPUT_BASE_NAME",
    "OUTPUT_FILE_PATTERN",
    "PROGRESS_HEADER",
    "brochure_file_name",
    "files_to_download_name",
    "firm_data_name",
    "incremental_name",
    "progress_name",
    "run_output_name",
    "run_stamp",
]
