"""Process-wide logging setup shared by the API, services, and the hold sweeper."""

from __future__ import annotations

import logging
import logging.config
from typing import Optional

from backend.utils.config import get_settings


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s"

# Loggers that keep their own level regardless of LOG_LEVEL.
QUIET_LOGGERS = {"redis": "WARNING", "httpx": "WARNING"}

_LOGGER_INITIALIZED = False


def configure_logging(level: Optional[str] = None) -> None:
    """Configure logging once per process.

    The thread name is part of every line so sweeper ticks can be told
    apart from request handling. Uvicorn's loggers are routed through the
    same handler.
    """

    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return

    resolved_level = (level or get_settings().log_level).upper()
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"engine": {"format": LOG_FORMAT}},
            "handlers": {
                "stdout": {
                    "class": "logging.StreamHandler",
                    "formatter": "engine",
                    "stream": "ext://sys.stdout",
                }
            },
            "root": {"level": resolved_level, "handlers": ["stdout"]},
            "loggers": {
                **{name: {"level": quiet} for name, quiet in QUIET_LOGGERS.items()},
                "uvicorn": {"handlers": ["stdout"], "propagate": False},
                "uvicorn.access": {"handlers": ["stdout"], "propagate": False},
            },
        }
    )
    _LOGGER_INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger for ``name`` after making sure logging is configured."""
    configure_logging()
    return logging.getLogger(name)
