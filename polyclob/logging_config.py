"""
Logging configuration for the polyclob client.

Provides structured logging for production use. Every handler carries the
credential redaction filter.
"""

import copy
import logging
import logging.config
from typing import Optional


DEFAULT_LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "filters": {
        "redact": {
            "()": "polyclob.utils.structured_logging.CredentialRedactionFilter"
        },
        "correlation": {
            "()": "polyclob.utils.structured_logging.CorrelationIdFilter"
        }
    },
    "formatters": {
        "standard": {
            "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S"
        },
        "detailed": {
            "format": (
                "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d "
                "- %(message)s (%(funcName)s) [%(correlation_id)s]"
            ),
            "datefmt": "%Y-%m-%d %H:%M:%S"
        },
        "json": {
            "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
            "format": "%(asctime)s %(name)s %(levelname)s %(correlation_id)s %(message)s"
        }
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "level": "DEBUG",
            "formatter": "standard",
            "filters": ["correlation", "redact"],
            "stream": "ext://sys.stdout"
        }
    },
    "loggers": {
        "polyclob": {
            "level": "INFO",
            "handlers": ["console"],
            "propagate": False
        }
    }
}


def build_logging_config(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    json_format: bool = False
) -> dict:
    """
    Build a dictConfig mapping without applying it.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional rotating log file path
        json_format: Use JSON formatting

    Returns:
        Logging config dict
    """
    config = copy.deepcopy(DEFAULT_LOGGING_CONFIG)
    logger_config = config["loggers"]["polyclob"]

    if level:
        logger_config["level"] = level.upper()

    if log_file:
        config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "DEBUG",
            "formatter": "detailed",
            "filters": ["correlation", "redact"],
            "filename": log_file,
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5
        }
        logger_config["handlers"].append("file")

    if json_format:
        for handler in config["handlers"].values():
            handler["formatter"] = "json"

    return config


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    json_format: bool = False
) -> None:
    """Apply :func:`build_logging_config` to the ``polyclob`` logger tree."""
    logging.config.dictConfig(build_logging_config(level, log_file, json_format))
