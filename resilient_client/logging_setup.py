"""
================================================================================
Logging Setup
================================================================================

Centralized Loguru configuration for the client and its test suites.

Sinks:
    - stderr, colourised
    - <log_dir>/client.log   all records at the configured level
    - <log_dir>/errors.log   ERROR and above only

Environment:
    LOG_LEVEL       default level (INFO)
    LOG_FILE_PATH   log directory (./logs)

Author: Automation Team
License: MIT
================================================================================
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Optional, Union

from loguru import logger

from .config_loader import ConfigLoader

DEFAULT_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}"

_logger_initialized: bool = False


def init_logger(
    level: Optional[str] = None,
    log_dir: Optional[Union[str, Path]] = None,
    format_str: Optional[str] = None,
    loader: Optional[ConfigLoader] = None,
) -> None:
    """
    Initializes the global Loguru logger.

    Safe to call repeatedly; only the first call configures sinks.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to config value.
        log_dir: Directory for the log files. Defaults to LOG_FILE_PATH or ./logs.
        format_str: Custom log format string. Defaults to config value.
        loader: Configuration source for the ``logging`` section.
    """
    global _logger_initialized

    if _logger_initialized:
        return

    settings = loader.get_section("logging") if loader is not None else {}

    log_level = (level or settings.get("level") or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_format = format_str or settings.get("format", DEFAULT_FORMAT)
    directory = Path(log_dir or settings.get("dir") or os.getenv("LOG_FILE_PATH", "./logs"))
    rotation = settings.get("rotation", "10 MB")
    retention = settings.get("retention", "7 days")

    logger.remove()
    logger.add(
        sys.stderr,
        level=log_level,
        format=log_format,
        colorize=True,
        backtrace=True,
        diagnose=False,
    )

    directory.mkdir(parents=True, exist_ok=True)
    file_format = log_format.replace("{level: <8}", "{level}")
    logger.add(
        directory / "client.log",
        level=log_level,
        format=file_format,
        rotation=rotation,
        retention=retention,
        enqueue=True,
    )
    logger.add(
        directory / "errors.log",
        level="ERROR",
        format=file_format,
        rotation=rotation,
        retention=retention,
        enqueue=True,
    )

    _logger_initialized = True
    logger.debug(f"Logger initialized with level {log_level}, files in {directory}")


def get_logger():
    """
    Returns the configured Loguru logger instance.

    Ensures the logger is initialized before returning.
    """
    if not _logger_initialized:
        init_logger()
    return logger


__all__ = ["init_logger", "get_logger"]
