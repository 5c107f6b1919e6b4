"""Logging configuration for the Workblix service."""

import logging
import sys

BASE_LOGGER = "workblix"
_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def get_logger(name, level=None):
    """Get a configured logger instance under the workblix namespace."""
    base = logging.getLogger(BASE_LOGGER)
    if not base.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        base.addHandler(handler)
        base.setLevel(logging.INFO)

    if name != BASE_LOGGER and not name.startswith(BASE_LOGGER + "."):
        name = f"{BASE_LOGGER}.{name}"
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level)
    return logger


def configure_logging(level="INFO"):
    """Set the level of every workblix logger in one place (called by create_app)."""
    base = get_logger(BASE_LOGGER)
    base.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    return base
