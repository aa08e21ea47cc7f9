"""Logging setup for the ``inventory_reports`` package.

Modules log through ``logging.getLogger(__name__)``; ``main.py`` calls
:func:`configure_logging` once so their records reach one stream handler.
"""
from __future__ import annotations

import logging
import sys
from typing import IO

from .config import PREFIX, getenv_with_default
from .errors import ConfigurationError

PACKAGE_LOGGER = "inventory_reports"
LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

_CONFIGURED = False


def configure_logging(level: int | str | None = None, stream: IO[str] = sys.stderr) -> logging.Logger:
    """Attach a stream handler to the package logger the first time it is called.

    Without *level* the ``INVENTORY_DASH_LOG_LEVEL`` variable decides, then
    ``INFO``.  Later calls return the already configured logger unchanged.
    """

    global _CONFIGURED
    logger = logging.getLogger(PACKAGE_LOGGER)
    if _CONFIGURED:
        return logger

    if level is None:
        level = getenv_with_default(f"{PREFIX}LOG_LEVEL", "INFO")
    if isinstance(level, str):
        name = level.strip().upper()
        level = logging.getLevelName(name)
        if not isinstance(level, int):
            raise ConfigurationError(f"Unknown log level {name!r}")

    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(level)
    # Records stop here so a configured root logger does not print them twice.
    logger.propagate = False

    _CONFIGURED = True
    return logger
