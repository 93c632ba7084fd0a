"""Logging configuration built around structlog JSON logging."""

from __future__ import annotations

import logging
import logging.config
import os
import re
from pathlib import Path
from typing import Iterable

import structlog

_LOGGING_INITIALISED = False


def _default_log_dir() -> Path:
    env_root = os.environ.get("AUCTION_INGEST_HOME")
    if env_root:
        return Path(env_root).expanduser().resolve() / "logs"
    return Path(__file__).resolve().parents[1] / "logs"


def _slug(name: str) -> str:
    return re.sub(r"[^0-9A-Za-z_-]+", "_", name.strip()).strip("_").lower() or "unknown"


def configure_logging(verbose: bool = False) -> structlog.BoundLogger:
    """Configure structlog + stdlib handlers and return application logger."""

    global _LOGGING_INITIALISED
    log_dir = _default_log_dir()
    error_log = log_dir / "error.log"
    ingest_log = log_dir / "ingest.log"
    makes_dir = log_dir / "makes"
    makes_dir.mkdir(parents=True, exist_ok=True)
    error_log.touch(exist_ok=True)
    ingest_log.touch(exist_ok=True)

    if not _LOGGING_INITIALISED:
        level = "DEBUG" if verbose else "INFO"
        logging.config.dictConfig(
            {
                "version": 1,
                "disable_existing_loggers": False,
                "formatters": {
                    "plain": {
                        "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
                        "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
                    }
                },
                "handlers": {
                    "console": {
                        "class": "logging.StreamHandler",
                        "level": level,
                        "formatter": "plain",
                    },
                    "ingest_file": {
                        "class": "logging.FileHandler",
                        "level": "INFO",
                        "filename": str(ingest_log),
                        "formatter": "plain",
                    },
                    "error_file": {
                        "class": "logging.FileHandler",
                        "level": "ERROR",
                        "filename": str(error_log),
                        "formatter": "plain",
                    },
                },
                "loggers": {
                    "auction_ingest": {
                        "handlers": ["console", "ingest_file", "error_file"],
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
    return structlog.get_logger("auction_ingest")


def make_logger(make: str, verbose: bool = False) -> structlog.BoundLogger:
    """Return a logger bound to one vehicle make, mirrored into its own file."""

    logger = configure_logging(verbose)
    slug = _slug(make)
    make_log_path = _default_log_dir() / "makes" / f"{slug}.log"
    make_log_path.parent.mkdir(parents=True, exist_ok=True)

    logger_name = f"auction_ingest.make.{slug}"
    py_logger = logging.getLogger(logger_name)
    if not any(
        isinstance(handler, logging.FileHandler) and handler.baseFilename == str(make_log_path)
        for handler in py_logger.handlers
    ):
        file_handler = logging.FileHandler(make_log_path, encoding="utf-8")
        global_logger = logging.getLogger("auction_ingest")
        if global_logger.handlers:
            file_handler.setFormatter(global_logger.handlers[0].formatter)
        file_handler.setLevel(logging.INFO)
        py_logger.addHandler(file_handler)

    return structlog.get_logger(logger_name).bind(make=make)


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    """Return the last N lines from a log file."""

    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        lines = stream.readlines()
    return lines[-line_count:]


def available_make_logs() -> Iterable[Path]:
    """Yield available per-make log file paths."""

    makes_dir = _default_log_dir() / "makes"
    if not makes_dir.exists():
        return []
    return sorted(p for p in makes_dir.glob("*.log"))


def log_path_for(make: str | None = None) -> Path:
    """Resolve the global log file, or the file of a single make."""

    if make:
        return _default_log_dir() / "makes" / f"{_slug(make)}.log"
    return _default_log_dir() / "ingest.log"


__all__ = [
    "available_make_logs",
    "configure_logging",
    "log_path_for",
    "make_logger",
    "tail_log",
]
