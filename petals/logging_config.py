"""Logging bootstrap for the petal viewer."""

import logging
from logging.config import dictConfig


def configure_logging(level: str = "INFO") -> None:
    """Route all library loggers to the console with a timestamped format."""
    level = level.upper()
    if level not in logging.getLevelNamesMapping():
        raise ValueError(f"Unknown log level: {level}")

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "level": level,
                },
            },
            "root": {"level": level, "handlers": ["console"]},
        }
    )


__all__ = ["configure_logging"]
