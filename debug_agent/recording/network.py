"""Network condition presets, preset matching and change tracking."""

from dataclasses import dataclass
from typing import Optional

import structlog

from .models import EventType

logger = structlog.get_logger()

# Latency difference still considered the same preset
LATENCY_TOLERANCE_MS = 10

CUSTOM_PRESET = "Custom"
DEFAULT_PRESET = "No throttling"


@dataclass(frozen=True)
class NetworkConditions:
    """Emulated network state. Throughput is in bytes/sec, -1 means unlimited."""

    offline: bool = False
    download_throughput: float = -1
    upload_throughput: float = -1
    latency: float = 0

    @classmethod
    def from_dict(cls, data: dict) -> "NetworkConditions":
        return cls(
            offline=bool(data.get("offline", False)),
            download_throughput=data.get("downloadThroughput", -1),
            upload_throughput=data.get("uploadThroughput", -1),
            latency=data.get("latency", 0),
        )

    def to_dict(self) -> dict:
        """CDP / wire form (Network.emulateNetworkConditions parameters)."""
        return {
            "offline": self.offline,
            "downloadThroughput": self.download_throughput,
            "uploadThroughput": self.upload_throughput,
            "latency": self.latency,
        }

    def matches(self, other: "NetworkConditions") -> bool:
        """Same offline flag and throughput, latency within tolerance."""
        return (
            self.offline == other.offline
            and self.download_throughput == other.download_throughput
            and self.upload_throughput == other.upload_throughput
            and abs(self.latency - other.latency) < LATENCY_TOLERANCE_MS
        )


NETWORK_PRESETS: dict[str, NetworkConditions] = {
    "Fast 3G": NetworkConditions(
        offline=False,
        download_throughput=150 * 1024,
        upload_throughput=75 * 1024,
        latency=562.5,
    ),
    "Slow 3G": NetworkConditions(
        offline=False,
        download_throughput=50 * 1024,
        upload_throughput=50 * 1024,
        latency=2000,
    ),
    "Fast 4G": NetworkConditions(
        offline=False,
        download_throughput=400 * 1024,
        upload_throughput=400 * 1024,
        latency=20,
    ),
    "Offline": NetworkConditions(
        offline=True,
        download_throughput=0,
        upload_throughput=0,
        latency=0,
    ),
    DEFAULT_PRESET: NetworkConditions(
        offline=False,
        download_throughput=-1,
        upload_throughput=-1,
        latency=0,
    ),
}


def get_preset(name: str) -> Optional[NetworkConditions]:
    """Look up a preset by name."""
    return NETWORK_PRESETS.get(name)


def presets_as_dict() -> dict[str, dict]:
    return {name: conditions.to_dict() for name, conditions in NETWORK_PRESETS.items()}


def _format_latency(latency: float) -> str:
    return str(int(latency)) if float(latency).is_integer() else str(latency)


def match_preset(conditions: NetworkConditions) -> str:
    """Name of the preset matching the conditions, or a descriptive Custom label."""
    for name, preset in NETWORK_PRESETS.items():
        if preset.matches(conditions):
            return name

    state = "Offline" if conditions.offline else "Online"
    down = round(conditions.download_throughput / 1024)
    up = round(conditions.upload_throughput / 1024)
    return (
        f"{CUSTOM_PRESET} ({state}, ↓{down}kb/s, ↑{up}kb/s, "
        f"{_format_latency(conditions.latency)}ms)"
    )


@dataclass
class NetworkObservation:
    """A network state change worth recording."""

    event_type: str
    preset_name: str
    conditions: NetworkConditions

    def to_event_data(self, page_id: Optional[str] = None) -> dict:
        return {
            "presetName": self.preset_name,
            "conditions": self.conditions.to_dict(),
            "pageId": page_id,
        }


class NetworkConditionTracker:
    """Turns pushed or applied network states into change observations.

    The first observed state always yields ``network_conditions_initial``;
    later states yield ``network_conditions_change`` only when they differ
    from the last recorded one beyond tolerance.

    Example:
        tracker = NetworkConditionTracker()
        tracker.observe(NETWORK_PRESETS["No throttling"])   # initial
        tracker.observe(NETWORK_PRESETS["No throttling"])   # None
        tracker.observe(NETWORK_PRESETS["Fast 3G"])         # change
    """

    def __init__(self):
        self.current: Optional[NetworkConditions] = None
        self.current_preset: str = DEFAULT_PRESET
        self.log = logger.bind(component="network_tracker")

    def observe(
        self,
        conditions: NetworkConditions,
        preset_name: Optional[str] = None,
    ) -> Optional[NetworkObservation]:
        """Record a state; returns an observation when it is new."""
        if self.current is not None and self.current.matches(conditions):
            return None

        event_type = (
            EventType.NETWORK_CONDITIONS_INITIAL.value
            if self.current is None
            else EventType.NETWORK_CONDITIONS_CHANGE.value
        )
        self.current = conditions
        self.current_preset = preset_name or match_preset(conditions)
        self.log.debug("Network state observed", event_type=event_type, preset=self.current_preset)
        return NetworkObservation(
            event_type=event_type,
            preset_name=self.current_preset,
            conditions=conditions,
        )
