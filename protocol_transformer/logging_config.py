"""
Logging Configuration Module

Console logging setup for applications embedding the transformer package.
"""

import logging
import logging.config
from typing import Optional

from protocol_transformer.config import get_settings


def setup_logging(level: Optional[str] = None):
    """
    Configure log format for the transformer package.
    The library never calls this on import; embedding applications opt in.
    """
    settings = get_settings()
    log_level = level or ("DEBUG" if settings.DEBUG else settings.LOG_LEVEL)

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            "protocol_transformer": {
                "handlers": ["console"],
                "level": log_level,
                "propagate": False,
            },
        },
    }

    logging.config.dictConfig(logging_config)
