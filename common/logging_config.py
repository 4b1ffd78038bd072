# common/logging_config.py
import logging
import logging.config
import os

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def build_logging_config(level: str = LOG_LEVEL) -> dict:
    """
    Return a ``logging.config.dictConfig`` schema for a service.

    Every service logger lives under its own root name (``bookings``,
    ``rooms``...) and writes to the console through one shared handler.
    See https://docs.python.org/3/library/logging.config.html#logging-config-dictschema
    """
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": LOG_FORMAT,
                "datefmt": "%d-%b-%y %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stderr",
                "level": "DEBUG",
            },
        },
        "loggers": {
            "bookings": {
                "handlers": ["console"],
                "level": level,
                "propagate": True,
            },
        },
    }


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.config.dictConfig(build_logging_config(level))
