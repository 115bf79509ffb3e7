"""Logging configuration built around structlog JSON logging."""

from __future__ import annotations

import logging
import logging.config
from enum import Enum
from pathlib import Path
from typing import Iterable

import structlog

_LOGGING_INITIALISED = False
_LOG_DIR: Path | None = None


class ProcessingPhase(str, Enum):
    """Pipeline phases bound onto log events."""

    INITIALIZATION = "INITIALIZATION"
    DOWNLOADING_FEED = "DOWNLOADING_FEED"
    PARSING_FEED = "PARSING_FEED"
    EXTRACTING_BROCHURE_URLS = "EXTRACTING_BROCHURE_URLS"
    DOWNLOADING_BROCHURES = "DOWNLOADING_BROCHURES"
    PROCESSING_BROCHURES = "PROCESSING_BROCHURES"
    MERGING = "MERGING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


def _default_log_dir() -> Path:
    if _LOG_DIR is not None:
        return _LOG_DIR
    return Path(__file__).resolve().parents[1] / "Data" / "Logs"


def configure_logging(verbose: bool = False, log_dir: Path | None = None) -> structlog.BoundLogger:
    """Configure structlog + stdlib handlers and return application logger."""

    global _LOGGING_INITIALISED, _LOG_DIR
    if log_dir is not None and not _LOGGING_INITIALISED:
        _LOG_DIR = log_dir
    directory = _default_log_dir()
    directory.mkdir(parents=True, exist_ok=True)
    error_log = directory / "error.log"
    pipeline_log = directory / "pipeline.log"

    if not _LOGGING_INITIALISED:
        level = "DEBUG" if verbose else "INFO"
        logging.config.dictConfig(
            {
                "version": 1,
                "disable_existing_loggers": False,
                "formatters": {
                    "json": {
                        "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
                        "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
                    }
                },
                "handlers": {
                    "console": {
                        "class": "logging.StreamHandler",
                        "level": "DEBUG" if verbose else "WARNING",
                        "formatter": "json",
                    },
                    "pipeline_file": {
                        "class": "logging.FileHandler",
                        "level": "INFO",
                        "filename": str(pipeline_log),
                        "formatter": "json",
                        "encoding": "utf-8",
                    },
                    "error_file": {
                        "class": "logging.FileHandler",
                        "level": "ERROR",
                        "filename": str(error_log),
                        "formatter": "json",
                        "encoding": "utf-8",
                    },
                },
                "loggers": {
                    "iapd_sync": {
                        "handlers": ["console", "pipeline_file", "error_file"],
                        "level": level,
                        "propagate": False,
                    },
                },
            }
        )

        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.stdlib.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _LOGGING_INITIALISED = True
    return structlog.get_logger("iapd_sync")


def phase_logger(phase: ProcessingPhase, **context: object) -> structlog.BoundLogger:
    """Return the pipeline logger bound to a processing phase."""

    return structlog.get_logger("iapd_sync.pipeline").bind(phase=phase.value, **context)


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    """Return the last N lines from a log file."""

    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        lines = stream.readlines()
    return lines[-line_count:]


def available_logs() -> Iterable[Path]:
    """Yield available log file paths."""

    directory = _default_log_dir()
    if not directory.exists():
        return []
    return sorted(p for p in directory.glob("*.log"))


__all__ = [
    "ProcessingPhase",
    "available_logs",
    "configure_logging",
    "phase_logger",
    "tail_log",
]
