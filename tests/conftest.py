"""Shared fixtures: isolated data home, CSV builders and a sample feed."""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Callable, Iterable, Mapping, Sequence

import pytest

from iapd_sync.config import ConfigLocator, ConfigRepository
from iapd_sync.config.loader import HOME_ENV_VAR

SAMPLE_FEED = """<?xml version="1.0" encoding="ISO-8859-1"?>
<IAPDFirmSECReport GenOn="2024-01-16">
  <Firms>
    <Firm>
      <Info SECRgnCD="NYRO" FirmCrdNb="12345" SECNb="801-1" BusNm="ALPHA ADVISERS" LegalNm="ALPHA ADVISERS LLC"/>
      <MainAddr Strt1="1 Main St" City="New York" State="NY" Cntry="United States" PostlCd="10001" PhNb="212-555-0100"/>
      <Rgstn FirmType="Registered" St="APPROVED" Dt="2001-02-03"/>
      <Filing Dt="01/15/2024" FormVrsn="10/2017"/>
      <FormInfo>
        <Part1A>
          <Item5A TtlEmp="12"/>
          <Item5F Q5F2C="1000000" Q5F2F="42"/>
        </Part1A>
      </FormInfo>
    </Firm>
    <Firm>
      <Info SECRgnCD="CHRO" FirmCrdNb="67890" SECNb="801-2" BusNm="BETA &quot;CAPITAL&quot;" LegalNm="BETA CAPITAL INC"/>
      <Filing Dt="01/10/2024" FormVrsn="10/2017"/>
    </Firm>
    <Firm>
      <Info SECRgnCD="SFRO" FirmCrdNb="55555" SECNb="801-3" BusNm="GAMMA" LegalNm="GAMMA LP"/>
      <Filing Dt="12/01/2023" FormVrsn="10/2017"/>
    </Firm>
  </Firms>
</IAPDFirmSECReport>
"""


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the data home at a temp dir so no test touches the real ``Data/`` tree."""

    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv(HOME_ENV_VAR, str(home))
    return home


@pytest.fixture
def locator(isolated_home: Path) -> ConfigLocator:
    return ConfigLocator()


@pytest.fixture
def temp_config_repository(locator: ConfigLocator) -> ConfigRepository:
    return ConfigRepository(locator)


@pytest.fixture
def write_csv() -> Callable[..., Path]:
    def _write(path: Path, header: Sequence[str], rows: Iterable[Mapping[str, str] | Sequence[str]]) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8", newline="") as stream:
            writer = csv.writer(stream)
            writer.writerow(header)
            for row in rows:
                if isinstance(row, Mapping):
                    writer.writerow([row.get(column, "") for column in header])
                else:
                    writer.writerow(row)
        return path

    return _write


@pytest.fixture
def read_csv() -> Callable[[Path], list[dict[str, str]]]:
    def _read(path: Path) -> list[dict[str, str]]:
        with path.open("r", encoding="utf-8", newline="") as stream:
            return list(csv.DictReader(stream))

    return _read


@pytest.fixture
def sample_feed(tmp_path: Path) -> Path:
    path = tmp_path / "IA_FIRM_SEC_Feed_01_16_2024.xml"
    path.write_text(SAMPLE_FEED, encoding="ISO-8859-1")
    return path


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()
