from __future__ import annotations

import logging
import os


_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_ROOT_LOGGER = "belegerfassung"


def coerce_level(value: str | int | None) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return _LEVELS.get(value.upper().strip(), logging.INFO)
    return logging.INFO


def configure_logging(level: str | int | None = None) -> logging.Logger:
    logger = logging.getLogger(_ROOT_LOGGER)
    resolved = coerce_level(level if level is not None else os.environ.get("LOG_LEVEL", "INFO"))
    logger.setLevel(resolved)

    if getattr(logger, "_belegerfassung_configured", False):
        for handler in logger.handlers:
            handler.setLevel(resolved)
        return logger

    handler = logging.StreamHandler()
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False
    setattr(logger, "_belegerfassung_configured", True)
    return logger
