"""
Configuration module for the indexing job orchestrator.
"""
from .constants import *
from .logging_config import setup_logger, get_logger, configure_logging, logger

__all__ = [
    # Logging
    'setup_logger',
    'get_logger',
    'configure_logging',
    'logger',
    # Constants (all exported via *)
]
