"""Configuration loading helpers for IAPD sync."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import structlog
import yaml

from .models import PipelineConfig

CONFIG_FILENAME = "iapd_config.yaml"
HOME_ENV_VAR = "IAPD_SYNC_HOME"

# Override keys accepted from the command line and the config section they land in.
OVERRIDE_SECTIONS: dict[str, str] = {
    "url_rate_per_second": "rate_limits",
    "download_rate_per_second": "rate_limits",
    "max_retries": "retry",
    "index_limit": "options",
    "max_items": "options",
    "incremental": "options",
    "baseline_file": "options",
    "feed_file": "options",
    "force_restart": "options",
    "skip_downloads": "options",
    "resume": "options",
    "validate_pdfs": "options",
    "local_io_failure_threshold": "options",
    "verbose": "options",
}


def _read_file(path: Path) -> dict:
    text = path.read_text(encoding="utf-8")
    if path.suffix in (".yaml", ".yml"):
        data = yaml.safe_load(text) or {}
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file must contain a mapping: {path}")
    return data


def _write_file(path: Path, payload: dict) -> None:
    with path.open("w", encoding="utf-8") as stream:
        if path.suffix in (".yaml", ".yml"):
            yaml.safe_dump(payload, stream, allow_unicode=True, sort_keys=False)
        else:
            json.dump(payload, stream, indent=2, ensure_ascii=False)


@dataclass(slots=True)
class ConfigLocator:
    """Resolve the data directory tree from the project home."""

    project_root: Path | None = None
    data_dir: Path | None = None
    firm_files_dir: Path | None = None
    downloads_dir: Path | None = None
    output_dir: Path | None = None
    input_dir: Path | None = None
    logs_dir: Path | None = None

    def __post_init__(self) -> None:
        env_root = os.environ.get(HOME_ENV_VAR)
        if env_root:
            root = Path(env_root).expanduser().resolve()
        else:
            root = (self.project_root or Path(__file__).resolve().parents[2]).resolve()
        self.project_root = root
        self.data_dir = (root / "Data").resolve()
        self.firm_files_dir = self.data_dir / "FirmFiles"
        self.downloads_dir = self.data_dir / "Downloads"
        self.output_dir = self.data_dir / "Output"
        self.input_dir = self.data_dir / "Input"
        self.logs_dir = self.data_dir / "Logs"
        self.ensure_directories()

    def ensure_directories(self) -> None:
        for directory in (
            self.data_dir,
            self.firm_files_dir,
            self.downloads_dir,
            self.output_dir,
            self.input_dir,
            self.logs_dir,
        ):
            directory.mkdir(parents=True, exist_ok=True)

    def config_path(self) -> Path:
        return self.data_dir / CONFIG_FILENAME


class ConfigRepository:
    """Repository encapsulating config IO, schema validation and override layering."""

    def __init__(self, locator: ConfigLocator | None = None) -> None:
        self.locator = locator or ConfigLocator()
        self._cache: PipelineConfig | None = None
        self._from_file = False
        self.logger = structlog.get_logger("iapd_sync.config").bind(component="config")

    # ------------------------------------------------------------------
    def load(self) -> PipelineConfig:
        if self._cache is not None:
            return self._cache
        path = self.locator.config_path()
        if path.exists():
            payload = _read_file(path)
            config = PipelineConfig.model_validate(payload)
            config.config_source = "file"
            self._from_file = True
        else:
            config = PipelineConfig()
            self.save(config)
        self._cache = config
        return config

    def save(self, config: PipelineConfig) -> Path:
        path = self.locator.config_path()
        payload = config.model_dump(mode="json", exclude={"config_source"})
        _write_file(path, payload)
        self._cache = config
        return path

    def resolve(self, overrides: Mapping[str, Any] | None = None) -> PipelineConfig:
        """Return the effective config: overrides > config file > defaults."""

        base = self.load()
        payload = base.model_dump(mode="python")
        applied: list[str] = []
        for key, value in (overrides or {}).items():
            if value is None:
                continue
            section = OVERRIDE_SECTIONS.get(key)
            if section is None:
                raise KeyError(f"Unknown configuration override: {key}")
            payload[section][key] = value
            applied.append(key)
        if applied:
            payload["config_source"] = "command-line"
        resolved = PipelineConfig.model_validate(payload)
        self.logger.debug(
            "config_resolved",
            source=resolved.config_source,
            overrides=applied,
            url_rate=resolved.rate_limits.url_rate_per_second,
            download_rate=resolved.rate_limits.download_rate_per_second,
        )
        return resolved


__all__ = ["CONFIG_FILENAME", "ConfigLocator", "ConfigRepository", "HOME_ENV_VAR"]
