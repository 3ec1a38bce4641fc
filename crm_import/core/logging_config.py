"""
Logging setup for the import service.

Every module logs through ``logging.getLogger(__name__)``. Rows are persisted
on ``import-row`` worker threads, so the thread name is part of each line.
"""
from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Optional

from crm_import.core.config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(threadName)-14s | %(name)s | %(message)s"

# Third-party loggers that are too chatty at INFO
_LIBRARY_LEVELS = {
    "sqlalchemy.engine": logging.WARNING,
    "multipart": logging.WARNING,
    "uvicorn.access": logging.WARNING,
}

_is_configured = False


def configure_logging(level: Optional[str] = None) -> None:
    """Install the console handler once; ``level`` defaults to ``settings.log_level``."""
    global _is_configured

    if _is_configured:
        return

    log_level = (level or settings.log_level or "INFO").upper()

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {"format": LOG_FORMAT, "datefmt": "%Y-%m-%d %H:%M:%S"},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "standard",
                    "level": log_level,
                }
            },
            "loggers": {
                name: {"level": logging.getLevelName(library_level)}
                for name, library_level in _LIBRARY_LEVELS.items()
            },
            "root": {
                "handlers": ["console"],
                "level": log_level,
            },
        }
    )
    logging.getLogger("crm_import").setLevel(log_level)

    _is_configured = True
