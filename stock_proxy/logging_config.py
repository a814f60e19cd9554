"""
Logging setup for the Stock Proxy API.

One stdout handler on the root logger; modules log through get_logger(__name__).
"""
import logging
import sys
from typing import Optional

from .config import settings

# Third-party loggers that would otherwise log every upstream request
QUIET_LOGGERS = ("httpx", "httpcore")


def resolve_log_level(level: Optional[str] = None) -> str:
    """
    Pick the effective log level name.

    An explicit ``level`` wins, then ``settings.log_level``, then DEBUG or
    INFO depending on ``settings.debug``.
    """
    if level is None:
        level = settings.log_level or ("DEBUG" if settings.debug else "INFO")
    return level.upper()


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure application-wide logging.

    Args:
        level: Override log level name. See resolve_log_level.
    """
    level = resolve_log_level(level)

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Logger for a module; pass ``__name__``."""
    return logging.getLogger(name)
