"""Logging setup for applications embedding tabwarden."""

import logging
import sys

from tabwarden.config import CONFIG

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

_THIRD_PARTY_LOGGERS = ('bubus', 'playwright', 'asyncio')


def setup_logging(level: str | int | None = None) -> logging.Logger:
    """Configure the ``tabwarden`` logger hierarchy.

    Logs go to stderr so they never mix with program output. Calling this
    more than once replaces the previously installed handler instead of
    stacking a new one.

    Args:
        level: Logging level name or number. Defaults to ``TABWARDEN_LOGGING_LEVEL``.

    Returns:
        The configured ``tabwarden`` logger.
    """
    if level is None:
        level = CONFIG.LOGGING_LEVEL
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    tabwarden_logger = logging.getLogger('tabwarden')
    for handler in list(tabwarden_logger.handlers):
        if getattr(handler, '_tabwarden_handler', False):
            tabwarden_logger.removeHandler(handler)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    stderr_handler._tabwarden_handler = True  # type: ignore[attr-defined]

    tabwarden_logger.addHandler(stderr_handler)
    tabwarden_logger.setLevel(level)

    for name in _THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return tabwarden_logger
