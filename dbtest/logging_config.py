"""Logging setup shared by the CLI and the driver."""

from __future__ import annotations

import logging
import logging.config
import os
import sys
from typing import Any


def get_log_level(verbose: bool = False) -> str:
    """``DBTEST_LOG_LEVEL`` wins; otherwise INFO when verbose, WARNING if not."""
    env = os.getenv("DBTEST_LOG_LEVEL")
    if env:
        return env.upper()
    return "INFO" if verbose else "WARNING"


def get_logging_config(verbose: bool = False) -> dict[str, Any]:
    log_level = get_log_level(verbose)
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s | %(threadName)-24s | %(levelname)-7s | %(message)s",
                "datefmt": "%H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": "standard",
                "stream": sys.stderr,
            },
        },
        "loggers": {
            "dbtest": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
            "backends": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
            # Request lines for every operation drown out the narration.
            "httpx": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False,
            },
        },
        "root": {
            "level": "WARNING",
            "handlers": ["console"],
        },
    }


def setup_logging(verbose: bool = False) -> None:
    logging.config.dictConfig(get_logging_config(verbose))
    logging.getLogger("dbtest.logging").debug(
        "Logging configured with level: %s", get_log_level(verbose)
    )
