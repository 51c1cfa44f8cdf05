"""Utility modules for the debug agent.

Provides:
- Structured logging configuration
- Replay progress logging
"""

from .logging import LogContext, ReplayProgressLogger, configure_logging, get_logger, log_operation

__all__ = [
    "configure_logging",
    "get_logger",
    "LogContext",
    "log_operation",
    "ReplayProgressLogger",
]
