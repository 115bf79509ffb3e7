from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from iapd_sync.config.loader import CONFIG_FILENAME, ConfigLocator, ConfigRepository
from iapd_sync.config.models import PipelineConfig


def test_config_locator_uses_env_and_creates_directories(isolated_home: Path) -> None:
    locator = ConfigLocator()
    assert locator.project_root == isolated_home.resolve()
    assert locator.data_dir == isolated_home.resolve() / "Data"
    for path in (
        locator.firm_files_dir,
        locator.downloads_dir,
        locator.output_dir,
        locator.input_dir,
        locator.logs_dir,
    ):
        assert path.is_dir()
        assert path.parent == locator.data_dir
    assert locator.config_path().name == CONFIG_FILENAME


def test_first_load_writes_defaults(temp_config_repository: ConfigRepository) -> None:
    config = temp_config_repository.load()
    assert config == PipelineConfig()
    assert config.config_source == "default"
    path = temp_config_repository.locator.config_path()
    payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert payload["rate_limits"]["url_rate_per_second"] == 1
    assert "config_source" not in payload


def test_load_reads_existing_file(locator: ConfigLocator) -> None:
    locator.config_path().write_text(
        yaml.safe_dump({"rate_limits": {"url_rate_per_second": 3}, "retry": {"max_retries": 2}}),
        encoding="utf-8",
    )
    config = ConfigRepository(locator).load()
    assert config.config_source == "file"
    assert config.rate_limits.url_rate_per_second == 3
    assert config.rate_limits.download_rate_per_second == 1
    assert config.retry.max_retries == 2


def test_resolve_layers_overrides_over_file(locator: ConfigLocator) -> None:
    locator.config_path().write_text(
        yaml.safe_dump({"rate_limits": {"url_rate_per_second": 3, "download_rate_per_second": 4}}),
        encoding="utf-8",
    )
    repository = ConfigRepository(locator)
    resolved = repository.resolve(
        {"url_rate_per_second": 9, "download_rate_per_second": None, "incremental": True, "feed_file": "feed.xml"}
    )
    assert resolved.config_source == "command-line"
    assert resolved.rate_limits.url_rate_per_second == 9
    assert resolved.rate_limits.download_rate_per_second == 4
    assert resolved.options.incremental is True
    assert resolved.options.feed_file == Path("feed.xml")
    assert repository.load().rate_limits.url_rate_per_second == 3


def test_resolve_without_overrides_keeps_source(temp_config_repository: ConfigRepository) -> None:
    assert temp_config_repository.resolve({}).config_source == "default"
    assert temp_config_repository.resolve({"max_items": None}).config_source == "default"


def test_resolve_rejects_unknown_override(temp_config_repository: ConfigRepository) -> None:
    with pytest.raises(KeyError):
        temp_config_repository.resolve({"threads": 4})


def test_resolve_validates_values(temp_config_repository: ConfigRepository) -> None:
    with pytest.raises(ValueError):
        temp_config_repository.resolve({"url_rate_per_second": 0})


def test_save_roundtrip(temp_config_repository: ConfigRepository) -> None:
    config = PipelineConfig()
    config.retry.max_retries = 7
    temp_config_repository.save(config)
    fresh = ConfigRepository(temp_config_repository.locator).load()
    assert fresh.retry.max_retries == 7


def test_non_mapping_file_is_rejected(locator: ConfigLocator) -> None:
    locator.config_path().write_text(json.dumps([1, 2, 3]), encoding="utf-8")
    with pytest.raises(ValueError):
        ConfigRepository(locator).load()
