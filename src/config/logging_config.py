"""
Logging configuration for the application.

Provides consistent logging setup across the application with
proper formatting and log levels.
"""

import logging
import sys
from typing import Optional
from src.config.settings import Settings
from src.shared.constants import LOG_DATE_FORMAT, LOG_FORMAT


def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Setup application logging.

    Args:
        settings: Optional settings instance. If not provided, uses default.
    """
    if settings is None:
        from src.config.settings import get_settings
        settings = get_settings()

    # Get log level from settings
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    if settings.debug:
        log_level = logging.DEBUG

    # Configure root logger
    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Set log level for specific loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    # Log startup message
    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured with level: {logging.getLevelName(log_level)}")
    logger.info(f"Application: {settings.app_name} v{settings.app_version}")
