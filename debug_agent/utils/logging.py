"""Structured logging configuration for the recorder and replayer.

Provides:
- Structured logging with structlog
- Context-aware logging
- Per-event progress reporting during replay
"""

import logging
import sys
from contextlib import contextmanager
from typing import Optional

import structlog


def configure_logging(
    level: str = "INFO",
    json_format: bool = False,
    include_timestamp: bool = True,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Output logs as JSON
        include_timestamp: Include timestamps in logs
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso") if include_timestamp else structlog.processors.TimeStamper(fmt=None),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None, **context) -> structlog.BoundLogger:
    """Get a configured logger with optional context.

    Args:
        name: Logger name
        **context: Additional context to bind

    Returns:
        Configured structlog logger
    """
    logger = structlog.get_logger(name)
    if context:
        logger = logger.bind(**context)
    return logger


class LogContext:
    """Context manager for scoped logging context.

    Usage:
        with LogContext(recording="checkout.json", speed=1.5):
            logger.info("Replaying")
            # All logs within this block have recording and speed bound
    """

    def __init__(self, **context):
        self.context = context

    def __enter__(self) -> "LogContext":
        structlog.contextvars.bind_contextvars(**self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        structlog.contextvars.unbind_contextvars(*self.context.keys())


@contextmanager
def log_operation(
    operation: str,
    logger: Optional[structlog.BoundLogger] = None,
    **context,
):
    """Context manager for logging operation start/end.

    Yields:
        Dict to store operation results

    Example:
        with log_operation("replay", recording="session.json") as op:
            result = await replay.run(path)
            op["events"] = result.events_replayed
    """
    log = logger or get_logger()
    log = log.bind(operation=operation, **context)

    log.info(f"{operation} started")
    result = {"success": False, "error": None}

    try:
        yield result
        result["success"] = True
        log.info(f"{operation} completed", **result)
    except Exception as e:
        result["error"] = str(e)
        log.error(f"{operation} failed", **result)
        raise


class ReplayProgressLogger:
    """Logger specialized for replay progress.

    Provides structured logging for:
    - Replay start/end
    - Event dispatch
    - Event failures
    """

    def __init__(self, total_events: int, speed: float):
        self.log = get_logger(component="replay")
        self.total_events = total_events
        self.speed = speed
        self.dispatched = 0
        self.failed = 0

    def replay_started(self, **metadata) -> None:
        """Log replay start."""
        self.log.info(
            "Replay started",
            total_events=self.total_events,
            speed=self.speed,
            **metadata,
        )

    def replay_finished(self, stopped: bool, duration_ms: int) -> None:
        """Log replay completion."""
        self.log.info(
            "Replay stopped" if stopped else "Replay completed",
            events_dispatched=self.dispatched,
            events_failed=self.failed,
            duration_ms=duration_ms,
        )

    def event_dispatched(self, event_index: int, event_type: str, **details) -> None:
        """Log one dispatched event."""
        self.dispatched += 1
        self.log.info(
            f"[{event_index + 1}/{self.total_events}] {event_type}",
            event_index=event_index,
            event_type=event_type,
            **details,
        )

    def event_failed(self, event_index: int, event_type: str, error: str) -> None:
        """Log an event whose dispatch raised."""
        self.failed += 1
        self.log.error(
            "Error replaying event",
            event_index=event_index,
            event_type=event_type,
            error=error,
        )

