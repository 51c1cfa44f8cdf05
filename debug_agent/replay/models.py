"""Data models for replay runs."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ReplayState(str, Enum):
    """Replay engine lifecycle."""

    IDLE = "idle"
    LAUNCHING = "launching"
    REPLAYING = "replaying"
    COMPLETING = "completing"
    CLOSED = "closed"


@dataclass
class ReplayOptions:
    """Options for one replay run."""

    speed: float = 1.0
    headless: bool = False
    devtools: bool = False
    url_override: Optional[str] = None


@dataclass
class NetworkActivity:
    """Requests, responses and failures seen during replay."""

    requests: list[dict] = field(default_factory=list)
    responses: list[dict] = field(default_factory=list)
    failures: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "requests": self.requests,
            "responses": self.responses,
            "failures": self.failures,
        }


@dataclass
class ReplayContext:
    """Everything collected during a replay run, returned at completion."""

    logs: list[str] = field(default_factory=list)
    console_logs: list[dict] = field(default_factory=list)
    instrumentation_events: list[dict] = field(default_factory=list)
    network: NetworkActivity = field(default_factory=NetworkActivity)
    final_results: Any = None
    started_at: int = 0
    ended_at: int = 0
    events_replayed: int = 0
    event_errors: list[dict] = field(default_factory=list)
    hook_errors: list[dict] = field(default_factory=list)
    completed: bool = False
    stopped: bool = False

    @property
    def duration_ms(self) -> int:
        return self.ended_at - self.started_at

    @property
    def meta(self) -> dict:
        return {
            "startedAt": self.started_at,
            "endedAt": self.ended_at,
            "durationMs": self.duration_ms,
        }

    def to_dict(self) -> dict:
        return {
            "logs": self.logs,
            "consoleLogs": self.console_logs,
            "instrumentationEvents": self.instrumentation_events,
            "network": self.network.to_dict(),
            "finalResults": self.final_results,
            "meta": self.meta,
            "eventsReplayed": self.events_replayed,
            "eventErrors": self.event_errors,
            "hookErrors": self.hook_errors,
            "completed": self.completed,
            "stopped": self.stopped,
        }
