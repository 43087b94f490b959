"""
Logging setup for tablesync processes.

Library modules only call ``logging.getLogger(__name__)``; handlers are
installed here, once, by whoever owns the process (the CLI or a worker).
"""

import logging
import logging.handlers
from typing import Optional

from .config import LoggingConfig


def configure_logging(config: Optional[LoggingConfig] = None, debug: bool = False) -> logging.Logger:
    """
    Configure the ``tablesync`` logger hierarchy.

    Args:
        config: Logging configuration; defaults are used when omitted
        debug: Force DEBUG level regardless of config

    Returns:
        The configured package logger
    """
    config = config or LoggingConfig()
    level = logging.DEBUG if debug else getattr(logging, config.level)

    logger = logging.getLogger("tablesync")
    logger.setLevel(level)

    # Replace handlers from any earlier call
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(config.format)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if config.file:
        file_handler = logging.handlers.RotatingFileHandler(
            config.file,
            maxBytes=config.max_size,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger
