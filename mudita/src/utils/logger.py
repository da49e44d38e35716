"""
Mudita - Logging
=================
Pre-configured logger factory for consistent, readable log output
across all Mudita modules.

Verbosity is driven by ``settings.ENV`` unless ``settings.LOG_LEVEL``
pins it explicitly:
  • ``"dev"``  → DEBUG level
  • ``"prod"`` → WARNING level

Usage:
    from mudita.src.utils.logger import get_logger
    logger = get_logger(__name__)
"""

import logging
import sys

from mudita.config.settings import settings

_ENV_LEVEL_MAP = {
    "dev": logging.DEBUG,
    "prod": logging.WARNING,
}
_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _default_level() -> int:
    if settings.LOG_LEVEL:
        return logging.getLevelName(settings.LOG_LEVEL)
    return _ENV_LEVEL_MAP.get(settings.ENV, logging.INFO)


def get_logger(name: str, level: int | None = None) -> logging.Logger:
    """
    Create and return a named logger with a standardised formatter.

    Args:
        name:  Typically ``__name__`` of the calling module.
        level: Explicit logging level override.  If *None*, the level
               comes from ``settings.LOG_LEVEL`` or ``settings.ENV``.

    Returns:
        A configured ``logging.Logger`` instance.
    """
    resolved_level = level if level is not None else _default_level()
    logger = logging.getLogger(name)

    # Handlers are attached once per logger name
    if not logger.handlers:
        logger.setLevel(resolved_level)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(resolved_level)
        console_handler.setFormatter(logging.Formatter(fmt=_LOG_FORMAT, datefmt=_DATE_FORMAT))
        logger.addHandler(console_handler)

        logger.propagate = False

    return logger
