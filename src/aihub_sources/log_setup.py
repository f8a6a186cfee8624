"""Centralized logging setup for aihub-sources."""

from __future__ import annotations

import logging
from typing import Optional

_LOGGER: Optional[logging.Logger] = None

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(level: str | int = "INFO") -> logging.Logger:
    """Configure the package logger once and return it.

    Later calls only adjust the level.
    """
    global _LOGGER
    resolved = level if isinstance(level, int) else getattr(logging, str(level).upper(), logging.INFO)
    if _LOGGER is not None:
        _LOGGER.setLevel(resolved)
        return _LOGGER

    logger = logging.getLogger("aihub_sources")
    logger.setLevel(resolved)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    # StreamHandler writes to stderr; stdout belongs to the MCP stdio transport
    logger.propagate = False

    _LOGGER = logger
    return logger
