"""
Centralized logging configuration for the application.
"""

import logging
import os
import sys
from typing import Optional


def setup_logging(log_level: Optional[str] = None) -> None:
    """
    Setup centralized logging configuration.

    Logs go to stderr: stdout carries the MCP stdio transport.

    Args:
        log_level: Level name, defaults to the LOG_LEVEL environment variable
    """
    level = (log_level or os.getenv('LOG_LEVEL', 'INFO')).upper()

    # Configure root logger
    logging.basicConfig(level=getattr(logging, level, logging.INFO),
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                        handlers=[logging.StreamHandler(sys.stderr)])
    logging.getLogger().setLevel(getattr(logging, level, logging.INFO))


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with proper configuration.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)
