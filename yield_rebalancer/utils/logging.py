"""Logging configuration for the yield rebalancer.

This module provides the stdout logging setup shared by the engine, the
scheduler and the command line tools.
"""

import logging
import sys
from typing import Any

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers that are chatty at INFO (one line per job run)
NOISY_LOGGERS = ("apscheduler", "urllib3")


def setup_logging(
    level: str = "INFO",
    log_format: str | None = None,
) -> None:
    """Configure logging for the application.

    Sets up the root logger with specified level and format. Logs are written
    to stdout. Scheduler and HTTP client loggers are capped at WARNING unless
    the requested level is DEBUG.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Custom format string. If None, uses default format.

    Example:
        >>> from yield_rebalancer.utils.logging import setup_logging
        >>> setup_logging(level="DEBUG")
    """
    if log_format is None:
        log_format = DEFAULT_FORMAT

    numeric_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=numeric_level,
        format=log_format,
        stream=sys.stdout,
        force=True,
    )

    noisy_level = logging.DEBUG if numeric_level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for a module.

    Args:
        name: Logger name (typically __name__ of the module)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def _format_value(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.6g}"
    if isinstance(value, dict):
        return "{" + ", ".join(f"{k}: {_format_value(v)}" for k, v in value.items()) + "}"
    return str(value)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    **context: Any,
) -> None:
    """Log a message with structured context.

    Context is appended to the message in key=value format. Floats are
    rendered with six significant digits so fractions stay readable.

    Args:
        logger: Logger instance
        level: Log level (debug, info, warning, error, critical)
        message: Log message
        **context: Additional context fields

    Example:
        >>> logger = get_logger(__name__)
        >>> log_with_context(logger, "info", "Yield fetched", pool="orca", apy=0.055)
        # Logs: "Yield fetched | pool=orca apy=0.055"
    """
    log_func = getattr(logger, level.lower())

    if context:
        context_str = " ".join(f"{k}={_format_value(v)}" for k, v in context.items())
        full_message = f"{message} | {context_str}"
    else:
        full_message = message

    log_func(full_message)
