"""
Configuration module: Settings, logging.
"""

from shared.config.settings import settings, get_settings, Settings, DATABASE_URL, REDIS_URL
from shared.config.logging import get_logger, setup_logging

__all__ = [
    # settings
    "settings",
    "get_settings",
    "Settings",
    "DATABASE_URL",
    "REDIS_URL",
    # logging
    "get_logger",
    "setup_logging",
]
