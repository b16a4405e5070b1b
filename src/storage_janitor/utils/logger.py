"""Logging configuration for storage-janitor."""

import logging
import sys
from pathlib import Path
from typing import Optional

PACKAGE_LOGGER = "storage_janitor"


def setup_logger(
    name: str = PACKAGE_LOGGER,
    level: Optional[int] = None,
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """
    Set up a logger with console and optional file output.

    Module loggers (``storage_janitor.core.hashing`` and friends) only get a
    console handler when they are created outside the package hierarchy;
    inside it they propagate to the package logger so that ``--verbose``
    reaches every module.

    Args:
        name: Logger name
        level: Logging level (default: INFO for the package logger, inherited otherwise)
        log_file: Optional file path for log output

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    is_child = name != PACKAGE_LOGGER and name.startswith(PACKAGE_LOGGER + ".")
    if is_child and log_file is None:
        if level is not None:
            logger.setLevel(level)
        return logger

    logger.setLevel(level if level is not None else logging.INFO)

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logger.level)
    console_format = logging.Formatter(
        fmt="%(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    console_handler.setFormatter(console_format)
    logger.addHandler(console_handler)

    # File handler if specified
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)  # More verbose in file
        file_format = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        file_handler.setFormatter(file_format)
        logger.addHandler(file_handler)

    return logger
