"""
Logging configuration for the workbench.

All modules log through ``get_logger(__name__)`` so that pipeline runs,
tests and interactive sessions share one format.
"""

import logging
import sys

LOG_FORMAT = "[%(asctime)s] %(levelname)s - [%(name)s] - %(message)s"


class _FallbackStreamHandler(logging.StreamHandler):
    """Writes to stdout only while the root logger has no handlers of its own."""

    def emit(self, record):
        if logging.getLogger().handlers:
            return
        super().emit(record)


def setup_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """
    Configure a logger with consistent formatting.

    Records always propagate. The attached stdout handler stays quiet once
    the root logger is configured (``logging.basicConfig``, pytest's
    ``caplog``), so output is never duplicated.

    Args:
        name: Name of the logger
        level: Logging level (default: INFO)

    Returns:
        logging.Logger: Configured logger instance
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        logger.setLevel(level)
        handler = _FallbackStreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get (and configure on first use) the logger with the given name."""
    return setup_logger(name)
