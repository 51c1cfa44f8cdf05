"""Session replay - re-execute recordings with optional instrumentation hooks.

This module provides:
- The replay engine (``Replay``)
- Instrumentation loading and hook invocation
- Replay options and the collected ``ReplayContext``
"""

from .engine import Replay, compute_delay, replace_base_url
from .instrumentation import (
    Instrumentation,
    InstrumentationHooks,
    compile_instrumentation,
    load_instrumentation_file,
    sanitize_instrumentation_code,
)
from .models import NetworkActivity, ReplayContext, ReplayOptions, ReplayState

__all__ = [
    # Engine
    "Replay",
    "compute_delay",
    "replace_base_url",
    # Instrumentation
    "Instrumentation",
    "InstrumentationHooks",
    "compile_instrumentation",
    "load_instrumentation_file",
    "sanitize_instrumentation_code",
    # Models
    "ReplayOptions",
    "ReplayContext",
    "ReplayState",
    "NetworkActivity",
]
