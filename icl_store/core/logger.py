from __future__ import annotations

import logging
import sys

from icl_store.core.settings import settings


def setup_logger(name: str = "icl_store", level: str | None = None) -> logging.Logger:
    """Configure the application logger and return it.

    Args:
        name: logger name (default: icl_store)
        level: log level name; falls back to settings.LOG_LEVEL

    Returns:
        the configured logging.Logger
    """
    log_level = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)

    logger = logging.getLogger(name)
    logger.setLevel(log_level)

    # avoid duplicate lines when create_app() runs more than once
    if logger.handlers:
        logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)s] [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(handler)
    logger.propagate = False
    return logger
