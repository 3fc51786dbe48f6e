"""Logger factory with a consistent format across services.

Usage:
    from shared.logger import get_logger
    logger = get_logger(__name__)
    logger.info("Something happened")
"""

import logging
import sys

from shared.settings import Settings

_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def _default_level() -> int:
    level = logging.getLevelName(Settings().log_level.upper())
    return level if isinstance(level, int) else logging.INFO


def get_logger(name: str, level: int | None = None) -> logging.Logger:
    """Return a named logger writing to stdout.

    Args:
        name: Typically ``__name__`` of the calling module.
        level: Explicit level override; defaults to ``Settings.log_level``.
    """
    logger = logging.getLogger(name)

    # Avoid duplicate handlers when the logger is requested again
    if not logger.handlers:
        resolved = level if level is not None else _default_level()
        logger.setLevel(resolved)
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(resolved)
        handler.setFormatter(
            logging.Formatter(fmt=_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
        )
        logger.addHandler(handler)
        logger.propagate = False

    return logger
