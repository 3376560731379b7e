"""Centralized logging configuration."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from .settings import LOG_LEVEL


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """Return a logger with a single stdout handler attached.

    Args:
        name: Logger name, usually ``__name__`` of the calling module.
        level: Optional level override; falls back to ``LOG_LEVEL``.
    """
    logger = logging.getLogger(name)
    log_level = (level or LOG_LEVEL).upper()
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(getattr(logging, log_level, logging.INFO))
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(handler)

    return logger
