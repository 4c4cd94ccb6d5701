"""
Logging configuration for the SCORM worker.
"""

import logging
import logging.config
import sys
from typing import Any

from loguru import logger


def setup_logging(log_level: str = "INFO", log_format: str | None = None) -> None:
    log_level = log_level.upper()
    if log_format is None:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging_dict: dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {"format": log_format, "datefmt": "%Y-%m-%d %H:%M:%S"},
        },
        "handlers": {
            "console": {
                "level": log_level,
                "class": "logging.StreamHandler",
                "formatter": "standard",
                "stream": "ext://sys.stdout",
            }
        },
        "loggers": {
            "uvicorn": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
            "fastapi": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
        },
        "root": {"level": log_level, "handlers": ["console"]},
    }
    logging.config.dictConfig(logging_dict)

    # Reset loguru's default stderr sink so it respects the configured level.
    logger.remove()
    logger.add(sys.stdout, level=log_level, backtrace=False, diagnose=False)
