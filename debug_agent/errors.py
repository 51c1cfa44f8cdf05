"""Exceptions raised by the debug agent."""


class DebugAgentError(Exception):
    """Base exception for debug agent errors."""

    pass


class RecordingLoadError(DebugAgentError):
    """Raised when a recording file is missing or cannot be parsed."""

    pass


class InstrumentationError(DebugAgentError):
    """Raised when instrumentation code cannot be compiled or exposes no hooks."""

    pass


class BrowserLaunchError(DebugAgentError):
    """Raised when the browser engine fails to start."""

    pass
