"""Verbosity level -> stdlib logging level for the icp_mapper logger tree."""

from __future__ import annotations

import logging

_VERBOSITY_LEVELS = {
    0: logging.ERROR,
    1: logging.WARNING,
    2: logging.INFO,
    3: logging.DEBUG,
}


def verbosity_to_level(verbosity_level: int) -> int:
    """Clamp verbosity into [0, 3] and map it to a logging level."""
    return _VERBOSITY_LEVELS[min(max(int(verbosity_level), 0), 3)]


def configure_package_logging(verbosity_level: int) -> logging.Logger:
    """Apply the verbosity to the ``icp_mapper`` package logger and return it."""
    logger = logging.getLogger("icp_mapper")
    logger.setLevel(verbosity_to_level(verbosity_level))
    return logger
