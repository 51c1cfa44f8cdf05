"""Browser session recording - capture interactions as timestamped events.

This module provides:
- The event and recording data model shared with replay
- The capture pipeline (``BrowserRecorder``)
- Network condition presets and change tracking
- The network control side channel for the browser extension
"""

from .models import (
    EventType,
    InteractionEvent,
    NavigationType,
    PageInfo,
    Recording,
    RecordingMetadata,
    Viewport,
    parse_payload,
)
from .network import NETWORK_PRESETS, NetworkConditions, NetworkConditionTracker, match_preset
from .recorder import BrowserRecorder, NavigationClassifier
from .store import load_recording, resolve_recording_path, save_recording

__all__ = [
    # Models
    "EventType",
    "NavigationType",
    "InteractionEvent",
    "Recording",
    "RecordingMetadata",
    "PageInfo",
    "Viewport",
    "parse_payload",
    # Network
    "NETWORK_PRESETS",
    "NetworkConditions",
    "NetworkConditionTracker",
    "match_preset",
    # Capture
    "BrowserRecorder",
    "NavigationClassifier",
    # Storage
    "load_recording",
    "save_recording",
    "resolve_recording_path",
]
