"""Logging for the scanning station.

Everything goes to the console and to ``ticketgate-runtime.log``, rotated at
UTC midnight. Camera reads happen on executor threads, so the thread name is
part of every line.
"""
from __future__ import annotations

import logging
from logging.config import dictConfig
from pathlib import Path
from typing import Any, Dict, Optional

RUNTIME_LOG_NAME = "ticketgate-runtime.log"
LINE_FORMAT = "%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s"

# Third-party loggers that are too chatty at the station's level.
QUIET_LOGGERS: Dict[str, str] = {
    "httpx": "WARNING",
    "httpcore": "WARNING",
    "uvicorn.access": "WARNING",
}


def build_logging_config(level: str, log_file: Path, retention_days: int) -> Dict[str, Any]:
    """dictConfig schema for the console and rotating runtime file."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"station": {"format": LINE_FORMAT}},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "station",
                "level": level,
            },
            "runtime_file": {
                "class": "logging.handlers.TimedRotatingFileHandler",
                "formatter": "station",
                "level": level,
                "filename": str(log_file),
                "when": "midnight",
                "utc": True,
                "backupCount": max(int(retention_days), 1),
                "delay": True,
                "encoding": "utf-8",
            },
        },
        "loggers": {name: {"level": quiet} for name, quiet in QUIET_LOGGERS.items()},
        "root": {"level": level, "handlers": ["console", "runtime_file"]},
    }


def configure_logging(level: str = "INFO", log_dir: Optional[Path] = None, retention_days: int = 14) -> Path:
    """Install the station logging setup; returns the runtime log path."""
    log_dir = Path(log_dir).expanduser() if log_dir is not None else Path(__file__).resolve().parents[1] / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / RUNTIME_LOG_NAME

    dictConfig(build_logging_config(level.upper(), log_file, retention_days))
    logging.getLogger(__name__).debug("Logging configured (level=%s, file=%s)", level.upper(), log_file)
    return log_file


__all__ = ["configure_logging", "build_logging_config"]
