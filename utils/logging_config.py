#!/usr/bin/env python3
"""Standardized logging configuration for the water scheduler.

Example:
    Basic usage::

        from utils.logging_config import setup_logging

        logger = setup_logging("water_scheduler")
        logger.info("Service started")

    With an append-only log file next to the console output::

        logger = setup_file_logging("water_scheduler", "water.log")

Attributes:
    DEFAULT_LOG_FORMAT: Standard logging format
    DEFAULT_LOG_LEVEL: Default logging level if not specified in environment
"""

import os
import sys
import logging
from typing import Optional, List
from logging import Logger, Handler, StreamHandler


DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

DEFAULT_LOG_LEVEL = "INFO"


def _resolve_level(log_level: Optional[str]):
    if log_level is None:
        log_level = os.environ.get('LOG_LEVEL', DEFAULT_LOG_LEVEL)
    log_level = log_level.upper()

    numeric_level = getattr(logging, log_level, None)
    if not isinstance(numeric_level, int):
        print(f"Warning: Invalid log level '{log_level}', using INFO", file=sys.stderr)
        return logging.INFO, "INFO"
    return numeric_level, log_level


def setup_logging(
    service_name: str,
    log_level: Optional[str] = None,
    format_string: Optional[str] = None,
    handlers: Optional[List[Handler]] = None
) -> Logger:
    """Set up logging for the service.

    Args:
        service_name: Name of the service logger
        log_level: Override log level. If None, reads from LOG_LEVEL env var
        format_string: Custom format string. If None, uses DEFAULT_LOG_FORMAT
        handlers: Custom handlers. If None, uses StreamHandler(sys.stdout)

    Returns:
        Logger: Configured logger instance for the service

    Example:
        >>> logger = setup_logging("water_scheduler")
        >>> logger.info("Service initialized")
        2026-10-19 07:30:00,012 [INFO] water_scheduler: Service initialized
    """
    numeric_level, log_level = _resolve_level(log_level)

    if format_string is None:
        format_string = DEFAULT_LOG_FORMAT

    if handlers is None:
        handler = StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(format_string))
        handlers = [handler]

    logging.basicConfig(
        level=numeric_level,
        format=format_string,
        handlers=handlers,
        force=True  # Override any existing configuration
    )

    logger = logging.getLogger(service_name)
    logger.setLevel(numeric_level)

    # paho logs every reconnect attempt
    configure_module_logging("paho.mqtt", "WARNING")

    logger.debug(f"Logging configured for {service_name} at {log_level} level")
    return logger


def configure_module_logging(module_name: str, level: Optional[str] = None) -> None:
    """Configure logging level for a specific module.

    Args:
        module_name: Name of the module (e.g., "paho.mqtt")
        level: Log level for the module. If None, inherits from root
    """
    logger = logging.getLogger(module_name)

    if level is not None:
        numeric_level = getattr(logging, level.upper(), None)
        if isinstance(numeric_level, int):
            logger.setLevel(numeric_level)
        else:
            logging.warning(f"Invalid log level '{level}' for module {module_name}")


def setup_file_logging(
    service_name: str,
    log_file: Optional[str],
    log_level: Optional[str] = None,
    file_level: str = "INFO"
) -> Logger:
    """Set up console logging plus an append-only log file.

    The file keeps a long-term record of waterings and faults, so it is
    written at ``file_level`` regardless of the console level.

    Args:
        service_name: Name of the service
        log_file: Path of the log file; empty or None for console only
        log_level: Console log level, see setup_logging
        file_level: Level of records written to the file

    Returns:
        Logger: Configured logger instance

    Note:
        Falls back to console-only logging if the file cannot be opened.
    """
    logger = setup_logging(service_name, log_level=log_level)
    if not log_file:
        return logger

    try:
        directory = os.path.dirname(os.path.abspath(log_file))
        os.makedirs(directory, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode='a')
    except OSError as e:
        logger.warning(f"Could not set up file logging: {e}")
        return logger

    numeric_level, _ = _resolve_level(file_level)
    file_handler.setLevel(numeric_level)
    file_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))

    # Console keeps its level, the file gets its own
    root = logging.getLogger()
    console_level = root.level
    for handler in root.handlers:
        if handler.level == logging.NOTSET:
            handler.setLevel(console_level)
    root.addHandler(file_handler)
    root.setLevel(min(console_level, numeric_level))
    logger.setLevel(min(logger.level, numeric_level))

    logger.info(f"File logging enabled at {log_file}")
    return logger
