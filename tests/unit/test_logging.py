"""Unit tests for logging configuration."""

import logging

import pytest

from yield_rebalancer.utils.logging import (
    NOISY_LOGGERS,
    get_logger,
    log_with_context,
    setup_logging,
)


class TestLoggingSetup:
    """Test cases for logging setup."""

    def test_setup_logging_default_level(self) -> None:
        """Test setup_logging with default INFO level."""
        setup_logging()
        assert logging.getLogger().level == logging.INFO

    def test_setup_logging_debug_level(self) -> None:
        """Test setup_logging with DEBUG level."""
        setup_logging(level="DEBUG")
        assert logging.getLogger().level == logging.DEBUG

    def test_setup_logging_invalid_level_fallback(self) -> None:
        """Test setup_logging with invalid level falls back to INFO."""
        setup_logging(level="INVALID")
        assert logging.getLogger().level == logging.INFO

    def test_noisy_loggers_capped(self) -> None:
        """Test scheduler and HTTP loggers are capped at WARNING."""
        setup_logging(level="INFO")

        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING

    def test_noisy_loggers_follow_debug(self) -> None:
        """Test DEBUG lets scheduler and HTTP loggers through."""
        setup_logging(level="DEBUG")

        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level == logging.DEBUG

        setup_logging(level="INFO")


class TestGetLogger:
    """Test cases for get_logger function."""

    def test_get_logger_returns_named_logger(self) -> None:
        """Test get_logger returns a logger with the given name."""
        logger = get_logger("test_module")

        assert isinstance(logger, logging.Logger)
        assert logger.name == "test_module"


class TestLogWithContext:
    """Test cases for log_with_context function."""

    def test_appends_context(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test context is appended as key=value pairs."""
        logger = get_logger("test_context")

        with caplog.at_level(logging.INFO, logger="test_context"):
            log_with_context(logger, "info", "Yield fetched", pool="orca", stale=0)

        assert "Yield fetched | pool=orca stale=0" in caplog.text

    def test_formats_floats(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test floats are rendered with six significant digits."""
        logger = get_logger("test_context_float")

        with caplog.at_level(logging.INFO, logger="test_context_float"):
            log_with_context(logger, "info", "Allocation", orca=1 / 3)

        assert "orca=0.333333" in caplog.text

    def test_formats_mappings(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test per-pool mappings are one field with formatted floats."""
        logger = get_logger("test_context_mapping")

        with caplog.at_level(logging.INFO, logger="test_context_mapping"):
            log_with_context(
                logger, "info", "Yields fetched", stale=0, yields={"stale": 1 / 3, "orca": 0.05}
            )

        assert "stale=0 yields={stale: 0.333333, orca: 0.05}" in caplog.text

    def test_without_context(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test message is logged unchanged without context."""
        logger = get_logger("test_no_context")

        with caplog.at_level(logging.WARNING, logger="test_no_context"):
            log_with_context(logger, "warning", "Plain message")

        assert caplog.records[-1].getMessage() == "Plain message"
        assert caplog.records[-1].levelno == logging.WARNING
