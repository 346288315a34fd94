import logging
import sys

from app.core.config import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: str = None) -> logging.Logger:
    """Configure console logging for the ``app`` package.

    Args:
        level: Level name (default: ``settings.log_level``)

    Returns:
        The configured ``app`` logger
    """
    logger = logging.getLogger("app")
    logger.setLevel((level or settings.log_level).upper())

    # Clear existing handlers so reloads don't duplicate output
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
    logger.addHandler(handler)
    logger.propagate = False

    return logger
