"""
Logging configuration for the storefront API.

One ``plantshop`` logger writes to stdout; modules ask for children of it
through :func:`get_logger`.
"""
import logging
import os
import sys

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logger = logging.getLogger("plantshop")
logger.setLevel(LOG_LEVEL)

if not logger.handlers:
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(LOG_LEVEL)

    formatter = logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    console_handler.setFormatter(formatter)

    logger.addHandler(console_handler)

# keep records out of the root logger
logger.propagate = False


def set_level(level: str) -> None:
    """Apply a level coming from app config to the logger and its handlers."""
    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)


def get_logger(name: str = None) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Optional name for the logger (will be appended to 'plantshop')

    Returns:
        Logger instance
    """
    if name:
        return logging.getLogger(f"plantshop.{name}")
    return logger
