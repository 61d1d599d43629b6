"""
Centralized logging configuration.

All orchestrator loggers live under one "indexer" logger that owns the
handlers; module loggers are its children and only propagate.
"""
import logging
import logging.handlers
from pathlib import Path
from typing import Optional, Union
from .constants import (
    LOG_LEVEL, LOG_FORMAT, LOG_FILE,
    LOG_MAX_SIZE_MB, LOG_BACKUP_COUNT
)

ROOT_LOGGER_NAME = 'indexer'


def _file_handler(log_file: Union[str, Path]) -> logging.Handler:
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.handlers.RotatingFileHandler(
        log_path,
        maxBytes=LOG_MAX_SIZE_MB * 1024 * 1024,
        backupCount=LOG_BACKUP_COUNT
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def setup_logger(name: str = None) -> logging.Logger:
    """
    Get a logger under the shared "indexer" logger.

    The first call attaches the handlers:
    - console at INFO
    - rotating file (LOG_FILE) at DEBUG

    Usage:
        from config.logging_config import setup_logger
        logger = setup_logger(__name__)   # -> "indexer.<module>"
        logger.info("Message here")

    Args:
        name: Module name. If None, returns the "indexer" logger itself.

    Returns:
        logging.Logger instance.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)

    # Avoid adding handlers multiple times
    if not root.handlers:
        root.setLevel(getattr(logging, LOG_LEVEL))

        console = logging.StreamHandler()
        console.setLevel(logging.INFO)
        console.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(console)

        root.addHandler(_file_handler(LOG_FILE))

    if not name or name == ROOT_LOGGER_NAME:
        return root
    return root.getChild(name)


def get_logger(name: str = None) -> logging.Logger:
    """
    Alias for setup_logger for convenience.

    Usage:
        from config.logging_config import get_logger
        logger = get_logger(__name__)
    """
    return setup_logger(name)


def configure_logging(level: str, log_file: Optional[Union[str, Path]] = None) -> logging.Logger:
    """
    Apply runtime settings to the "indexer" logger.

    Args:
        level: Level name (e.g. Settings.log_level); also applied to the console
        log_file: Replace the rotating file handler with one writing here

    Returns:
        The configured "indexer" logger
    """
    root = setup_logger()
    numeric = getattr(logging, level.upper(), logging.INFO)
    root.setLevel(numeric)

    for handler in list(root.handlers):
        if isinstance(handler, logging.handlers.RotatingFileHandler):
            if log_file is not None and Path(handler.baseFilename) != Path(log_file).resolve():
                root.removeHandler(handler)
                handler.close()
                root.addHandler(_file_handler(log_file))
        elif isinstance(handler, logging.StreamHandler):
            handler.setLevel(numeric)

    return root


# Shared logger for quick imports
# Usage: from config.logging_config import logger
logger = setup_logger()
