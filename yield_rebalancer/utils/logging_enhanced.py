"""Structured event logging for rebalancing ticks.

This module extends the basic logging with rotating JSON event files so that
every tick leaves a machine-readable record: the yield snapshot, the
decision, the plan and the outcome of each adapter call.
"""

import json
import logging
import logging.handlers
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


class RebalanceEventType(Enum):
    """Types of rebalancer events to log."""

    # Tick events
    TICK_COMPLETED = "tick_completed"
    TICK_REJECTED = "tick_rejected"

    # Yield events
    YIELD_STALE = "yield_stale"
    DEGENERATE_YIELD = "degenerate_yield"

    # Execution events
    ENTRY_SUCCEEDED = "entry_succeeded"
    ENTRY_FAILED = "entry_failed"
    ALLOCATION_APPLIED = "allocation_applied"

    # System events
    SCHEDULER_STARTED = "scheduler_started"
    SCHEDULER_STOPPED = "scheduler_stopped"

    # Error events
    TICK_ERROR = "tick_error"


class RebalanceLogger:
    """Rotating JSON logger for rebalancer events.

    Writes one JSON object per line to ``ticks.log``, ``execution.log`` and
    ``errors.log`` in ``log_dir``.

    Example:
        >>> events = RebalanceLogger(log_dir="logs")
        >>> events.log_tick(record.to_dict())
    """

    def __init__(
        self,
        log_dir: str | Path = "logs",
        max_bytes: int = 10 * 1024 * 1024,  # 10 MB
        backup_count: int = 30,
        enable_console: bool = False,
    ):
        """Initialize the event logger.

        Args:
            log_dir: Directory for log files
            max_bytes: Maximum size per log file (default 10 MB)
            backup_count: Number of backup files to keep (default 30)
            enable_console: Also echo events to the console
        """
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.max_bytes = max_bytes
        self.backup_count = backup_count
        self.enable_console = enable_console

        self.tick_logger = self._create_rotating_logger("ticks")
        self.execution_logger = self._create_rotating_logger("execution")
        self.error_logger = self._create_rotating_logger("errors", level=logging.ERROR)

    def _create_rotating_logger(
        self,
        name: str,
        level: int = logging.INFO,
    ) -> logging.Logger:
        # One logger per log directory; a new instance replaces the old handlers
        logger = logging.getLogger(f"rebalancer.events.{name}.{self.log_dir.resolve()}")
        logger.setLevel(level)
        logger.propagate = False
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)

        file_handler = logging.handlers.RotatingFileHandler(
            filename=self.log_dir / f"{name}.log",
            maxBytes=self.max_bytes,
            backupCount=self.backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(
            logging.Formatter(
                '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "event": %(message)s}'
            )
        )
        logger.addHandler(file_handler)

        if self.enable_console:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(level)
            console_handler.setFormatter(
                logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            )
            logger.addHandler(console_handler)

        return logger

    def _log_structured_event(
        self,
        logger: logging.Logger,
        event_type: RebalanceEventType,
        level: str = "info",
        **data: Any,
    ) -> None:
        event = {
            "event_type": event_type.value,
            "timestamp": datetime.now().isoformat(),
            **data,
        }
        getattr(logger, level)(json.dumps(event, default=str))

    def log_tick(self, record: Dict[str, Any]) -> None:
        """Log the full observability record of a completed tick."""
        self._log_structured_event(
            self.tick_logger, RebalanceEventType.TICK_COMPLETED, tick=record
        )

    def log_tick_rejected(self, reason: str) -> None:
        self._log_structured_event(
            self.tick_logger, RebalanceEventType.TICK_REJECTED, level="warning", reason=reason
        )

    def log_execution_event(
        self,
        event_type: RebalanceEventType,
        pool: str,
        direction: str,
        magnitude: float,
        error: Optional[str] = None,
        **extra: Any,
    ) -> None:
        """Log the outcome of one adapter call.

        Args:
            event_type: ENTRY_SUCCEEDED or ENTRY_FAILED
            pool: Pool identifier
            direction: "increase" or "decrease"
            magnitude: Allocation fraction moved
            error: Error message for failed entries
            **extra: Additional event data
        """
        data: Dict[str, Any] = {
            "pool": pool,
            "direction": direction,
            "magnitude": magnitude,
        }
        if error is not None:
            data["error"] = error
        data.update(extra)

        level = "warning" if event_type == RebalanceEventType.ENTRY_FAILED else "info"
        self._log_structured_event(self.execution_logger, event_type, level=level, **data)

    def log_allocation(self, allocation: Dict[str, float], **extra: Any) -> None:
        self._log_structured_event(
            self.execution_logger,
            RebalanceEventType.ALLOCATION_APPLIED,
            allocation=allocation,
            **extra,
        )

    def log_system_event(
        self,
        event_type: RebalanceEventType,
        message: str,
        **extra: Any,
    ) -> None:
        self._log_structured_event(self.tick_logger, event_type, message=message, **extra)

    def log_error(
        self,
        event_type: RebalanceEventType,
        error: str,
        **extra: Any,
    ) -> None:
        """Log an error event to ``errors.log``."""
        self._log_structured_event(
            self.error_logger, event_type, level="error", error=error, **extra
        )

    def close(self) -> None:
        """Close all file handlers."""
        for logger in (self.tick_logger, self.execution_logger, self.error_logger):
            for handler in list(logger.handlers):
                handler.close()
                logger.removeHandler(handler)
