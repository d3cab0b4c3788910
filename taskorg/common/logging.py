"""Logging helpers shared by the server and the client SDK."""

from __future__ import annotations

import logging
import sys

ROOT_LOGGER = "taskorg"

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

_configured = False


def setup_logging(level: str | None = None) -> None:
    """Attach a console handler to the package logger (idempotent)."""
    global _configured

    if level is None:
        from taskorg.config import settings

        level = settings.LOG_LEVEL

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(_FORMAT, _DATEFMT))
    logger.addHandler(handler)
    _configured = True
    logger.info("Logging initialized at %s", level.upper())


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
