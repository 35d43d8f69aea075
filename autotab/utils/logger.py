"""
autotab/utils/logger.py

Logger factory for the autotab package.
"""

import logging

from autotab.config import Config

_PACKAGE_LOGGER_NAME = "autotab"
_configured = False


def _configure_package_logger() -> None:
    """Attach a single stream handler to the package logger, formatted from Config."""
    global _configured
    if _configured:
        return
    package_logger = logging.getLogger(_PACKAGE_LOGGER_NAME)
    if not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt=Config.LOG_FORMAT, datefmt=Config.LOG_DATE_FORMAT))
        package_logger.addHandler(handler)
    package_logger.setLevel(Config.LOG_LEVEL)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a module of this package.
    Args:
        name: The logger name, normally the module's __name__.
    Returns:
        The configured logger.
    """
    _configure_package_logger()
    return logging.getLogger(name)
