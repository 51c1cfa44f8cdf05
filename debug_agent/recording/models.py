"""Data models for recorded browser sessions."""

import platform
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union


class EventType(str, Enum):
    """Known interaction event types.

    The set is open: recordings may carry other tags, which replay as no-ops.
    """

    NEWTAB = "newtab"
    CLOSETAB = "closetab"
    NAVIGATION = "navigation"
    SPA_NAVIGATION = "spa_navigation"
    CLICK = "click"
    INPUT = "input"
    KEYDOWN = "keydown"
    SCROLL = "scroll"
    FOCUS = "focus"
    SUBMIT = "submit"
    VIEWPORT_RESIZE = "viewport_resize"
    NETWORK_CONDITIONS_INITIAL = "network_conditions_initial"
    NETWORK_CONDITIONS_CHANGE = "network_conditions_change"
    MOUSEMOVE = "mousemove"
    TRACKING_INITIALIZED = "tracking_initialized"


class NavigationType(str, Enum):
    """How a recorded navigation came about."""

    INITIAL = "initial"
    HARD = "hard"
    REFRESH = "refresh"


def now_ms() -> int:
    """Current wall clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def as_ms(value: Any, default: Optional[int] = 0) -> Optional[int]:
    """Millisecond field from JSON; anything non-numeric becomes ``default``."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return int(value)


def _num(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    return None


def _str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


# =============================================================================
# Event payloads
# =============================================================================


@dataclass
class TabPayload:
    """Payload of newtab / closetab."""

    page_id: Optional[str] = None
    url: Optional[str] = None
    index: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict) -> "TabPayload":
        return cls(
            page_id=_str(data.get("pageId")),
            url=_str(data.get("url")),
            index=data.get("index") if isinstance(data.get("index"), int) else None,
        )


@dataclass
class NavigationPayload:
    """Payload of a full page navigation."""

    url: Optional[str] = None
    page_id: Optional[str] = None
    navigation_type: Optional[str] = None
    previous_url: Optional[str] = None

    @property
    def is_refresh(self) -> bool:
        return self.navigation_type == NavigationType.REFRESH.value

    @classmethod
    def from_dict(cls, data: dict) -> "NavigationPayload":
        return cls(
            url=_str(data.get("url")),
            page_id=_str(data.get("pageId")),
            navigation_type=_str(data.get("navigationType")),
            previous_url=_str(data.get("previousUrl")),
        )


@dataclass
class SpaNavigationPayload:
    """Payload of a history API or hash navigation."""

    url: Optional[str] = None
    previous_url: Optional[str] = None
    method: Optional[str] = None
    title: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "SpaNavigationPayload":
        return cls(
            url=_str(data.get("url")),
            previous_url=_str(data.get("previousUrl")),
            method=_str(data.get("method")),
            title=_str(data.get("title")),
        )


@dataclass
class ClickTarget:
    """Element under the pointer when a click was recorded."""

    tag: Optional[str] = None
    id: Optional[str] = None
    class_name: Optional[str] = None
    text: Optional[str] = None
    href: Optional[str] = None
    value: Optional[str] = None
    rect: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "ClickTarget":
        rect = data.get("rect")
        return cls(
            tag=_str(data.get("tag")),
            id=_str(data.get("id")),
            class_name=_str(data.get("class")),
            text=_str(data.get("text")),
            href=_str(data.get("href")),
            value=_str(data.get("value")),
            rect=rect if isinstance(rect, dict) else {},
        )


@dataclass
class ClickPayload:
    """Payload of a click. Coordinates are document (page) coordinates."""

    x: Optional[float] = None
    y: Optional[float] = None
    client_x: Optional[float] = None
    client_y: Optional[float] = None
    button: int = 0
    target: ClickTarget = field(default_factory=ClickTarget)

    @classmethod
    def from_dict(cls, data: dict) -> "ClickPayload":
        target = data.get("target")
        return cls(
            x=_num(data.get("x")),
            y=_num(data.get("y")),
            client_x=_num(data.get("clientX")),
            client_y=_num(data.get("clientY")),
            button=data.get("button") if isinstance(data.get("button"), int) else 0,
            target=ClickTarget.from_dict(target) if isinstance(target, dict) else ClickTarget(),
        )


@dataclass
class InputPayload:
    """Payload of an input change on a form field."""

    value: Optional[str] = None
    type: Optional[str] = None
    name: Optional[str] = None
    id: Optional[str] = None
    tag: Optional[str] = None

    @property
    def selector(self) -> Optional[str]:
        """Selector used to find the field again: id first, then name."""
        if self.id:
            return f"#{self.id}"
        if self.name:
            return f'[name="{self.name}"]'
        return None

    @classmethod
    def from_dict(cls, data: dict) -> "InputPayload":
        return cls(
            value=_str(data.get("value")),
            type=_str(data.get("type")),
            name=_str(data.get("name")),
            id=_str(data.get("id")),
            tag=_str(data.get("tag")),
        )


@dataclass
class KeydownPayload:
    """Payload of a key press."""

    key: Optional[str] = None
    code: Optional[str] = None
    key_code: Optional[int] = None
    ctrl_key: bool = False
    shift_key: bool = False
    alt_key: bool = False
    meta_key: bool = False
    target: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "KeydownPayload":
        target = data.get("target")
        return cls(
            key=_str(data.get("key")),
            code=_str(data.get("code")),
            key_code=data.get("keyCode") if isinstance(data.get("keyCode"), int) else None,
            ctrl_key=bool(data.get("ctrlKey")),
            shift_key=bool(data.get("shiftKey")),
            alt_key=bool(data.get("altKey")),
            meta_key=bool(data.get("metaKey")),
            target=target if isinstance(target, dict) else {},
        )


@dataclass
class ScrollPayload:
    """Payload of a settled scroll position."""

    x: float = 0
    y: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None
    viewport_width: Optional[float] = None
    viewport_height: Optional[float] = None

    @classmethod
    def from_dict(cls, data: dict) -> "ScrollPayload":
        return cls(
            x=_num(data.get("x")) or 0,
            y=_num(data.get("y")),
            width=_num(data.get("width")),
            height=_num(data.get("height")),
            viewport_width=_num(data.get("viewportWidth")),
            viewport_height=_num(data.get("viewportHeight")),
        )


@dataclass
class FocusPayload:
    """Payload of a focus change."""

    tag: Optional[str] = None
    id: Optional[str] = None
    name: Optional[str] = None
    type: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "FocusPayload":
        return cls(
            tag=_str(data.get("tag")),
            id=_str(data.get("id")),
            name=_str(data.get("name")),
            type=_str(data.get("type")),
        )


@dataclass
class SubmitPayload:
    """Payload of a form submission."""

    action: Optional[str] = None
    method: Optional[str] = None
    fields: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "SubmitPayload":
        fields = data.get("data")
        return cls(
            action=_str(data.get("action")),
            method=_str(data.get("method")),
            fields=fields if isinstance(fields, dict) else {},
        )


@dataclass
class ViewportPayload:
    """Payload of a viewport resize."""

    width: Optional[int] = None
    height: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict) -> "ViewportPayload":
        width = _num(data.get("width"))
        height = _num(data.get("height"))
        return cls(
            width=int(width) if width is not None else None,
            height=int(height) if height is not None else None,
        )


@dataclass
class NetworkConditionsPayload:
    """Payload of network_conditions_initial / network_conditions_change."""

    preset_name: Optional[str] = None
    conditions: Optional[dict] = None
    page_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "NetworkConditionsPayload":
        conditions = data.get("conditions")
        return cls(
            preset_name=_str(data.get("presetName")),
            conditions=conditions if isinstance(conditions, dict) else None,
            page_id=_str(data.get("pageId")),
        )


@dataclass
class MouseMovePayload:
    """Payload of a sampled mouse position."""

    x: Optional[float] = None
    y: Optional[float] = None
    client_x: Optional[float] = None
    client_y: Optional[float] = None

    @classmethod
    def from_dict(cls, data: dict) -> "MouseMovePayload":
        return cls(
            x=_num(data.get("x")),
            y=_num(data.get("y")),
            client_x=_num(data.get("clientX")),
            client_y=_num(data.get("clientY")),
        )


@dataclass
class TrackingPayload:
    """Payload emitted once the capture script is installed in a document."""

    url: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "TrackingPayload":
        return cls(url=_str(data.get("url")))


@dataclass
class OpaquePayload:
    """Payload of an event type this version does not know about."""

    raw: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "OpaquePayload":
        return cls(raw=dict(data))


EventPayload = Union[
    TabPayload,
    NavigationPayload,
    SpaNavigationPayload,
    ClickPayload,
    InputPayload,
    KeydownPayload,
    ScrollPayload,
    FocusPayload,
    SubmitPayload,
    ViewportPayload,
    NetworkConditionsPayload,
    MouseMovePayload,
    TrackingPayload,
    OpaquePayload,
]

PAYLOAD_TYPES: dict[str, type] = {
    EventType.NEWTAB.value: TabPayload,
    EventType.CLOSETAB.value: TabPayload,
    EventType.NAVIGATION.value: NavigationPayload,
    EventType.SPA_NAVIGATION.value: SpaNavigationPayload,
    EventType.CLICK.value: ClickPayload,
    EventType.INPUT.value: InputPayload,
    EventType.KEYDOWN.value: KeydownPayload,
    EventType.SCROLL.value: ScrollPayload,
    EventType.FOCUS.value: FocusPayload,
    EventType.SUBMIT.value: SubmitPayload,
    EventType.VIEWPORT_RESIZE.value: ViewportPayload,
    EventType.NETWORK_CONDITIONS_INITIAL.value: NetworkConditionsPayload,
    EventType.NETWORK_CONDITIONS_CHANGE.value: NetworkConditionsPayload,
    EventType.MOUSEMOVE.value: MouseMovePayload,
    EventType.TRACKING_INITIALIZED.value: TrackingPayload,
}


def parse_payload(event_type: str, data: Any) -> EventPayload:
    """Build the typed payload for an event, falling back to OpaquePayload."""
    if not isinstance(data, dict):
        data = {}
    payload_cls = PAYLOAD_TYPES.get(event_type, OpaquePayload)
    return payload_cls.from_dict(data)


# =============================================================================
# Events and recordings
# =============================================================================


@dataclass
class Viewport:
    """Viewport dimensions in CSS pixels."""

    width: int
    height: int

    def to_dict(self) -> dict:
        return {"width": self.width, "height": self.height}


@dataclass
class InteractionEvent:
    """A single timestamped interaction or state change."""

    timestamp: int  # Absolute epoch milliseconds
    type: str
    data: dict = field(default_factory=dict)
    page_id: Optional[str] = None
    page_url: Optional[str] = None
    viewport: Optional[Viewport] = None

    @property
    def payload(self) -> EventPayload:
        """Typed view over the raw data dict."""
        return parse_payload(self.type, self.data)

    @property
    def is_known_type(self) -> bool:
        return self.type in PAYLOAD_TYPES

    @classmethod
    def from_dict(cls, data: dict) -> "InteractionEvent":
        """Create an InteractionEvent from its JSON form."""
        viewport = data.get("viewport")
        payload = data.get("data")
        return cls(
            timestamp=as_ms(data.get("timestamp")),
            type=str(data.get("type", "")),
            data=payload if isinstance(payload, dict) else {},
            page_id=data.get("pageId"),
            page_url=data.get("pageUrl"),
            viewport=(
                Viewport(width=viewport.get("width", 0), height=viewport.get("height", 0))
                if isinstance(viewport, dict)
                else None
            ),
        )

    def to_dict(self) -> dict:
        result = {
            "timestamp": self.timestamp,
            "type": self.type,
            "data": self.data,
        }
        if self.page_id is not None:
            result["pageId"] = self.page_id
        if self.page_url is not None:
            result["pageUrl"] = self.page_url
        if self.viewport is not None:
            result["viewport"] = self.viewport.to_dict()
        return result


@dataclass
class RecordingMetadata:
    """Metadata about a recording session."""

    browser: str = "chromium"
    platform: str = field(default_factory=lambda: sys.platform)
    recorded_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    )
    duration: Optional[int] = None
    name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "RecordingMetadata":
        return cls(
            browser=data.get("browser", "unknown"),
            platform=data.get("platform", "unknown"),
            recorded_at=data.get("recordedAt", ""),
            duration=as_ms(data.get("duration"), default=None),
            name=data.get("name"),
        )

    def to_dict(self) -> dict:
        result = {
            "browser": self.browser,
            "platform": self.platform,
            "recordedAt": self.recorded_at,
        }
        if self.duration is not None:
            result["duration"] = self.duration
        if self.name is not None:
            result["name"] = self.name
        return result


@dataclass
class Recording:
    """A complete recording: the ordered event log plus session metadata."""

    start_time: int = field(default_factory=now_ms)
    end_time: Optional[int] = None
    events: list[InteractionEvent] = field(default_factory=list)
    metadata: RecordingMetadata = field(default_factory=RecordingMetadata)

    @property
    def event_count(self) -> int:
        return len(self.events)

    @property
    def duration_ms(self) -> Optional[int]:
        """Recorded duration, falling back to the event span."""
        if self.metadata.duration is not None:
            return self.metadata.duration
        if self.end_time is not None:
            return self.end_time - self.start_time
        if self.events:
            return self.events[-1].timestamp - self.events[0].timestamp
        return None

    def append(self, event: InteractionEvent) -> None:
        self.events.append(event)

    def finalize(self, name: Optional[str] = None, end_time: Optional[int] = None) -> None:
        """Stamp end time and duration; called once when capture stops."""
        self.end_time = end_time if end_time is not None else now_ms()
        self.metadata.duration = self.end_time - self.start_time
        if name:
            self.metadata.name = name

    def event_types(self) -> dict[str, list[InteractionEvent]]:
        """Events grouped by type, in first-seen order."""
        grouped: dict[str, list[InteractionEvent]] = {}
        for event in self.events:
            grouped.setdefault(event.type, []).append(event)
        return grouped

    @classmethod
    def new(cls, browser: str = "chromium") -> "Recording":
        """Start an empty recording stamped with the current time and host."""
        return cls(
            start_time=now_ms(),
            metadata=RecordingMetadata(browser=browser, platform=sys.platform or platform.system()),
        )

    @classmethod
    def from_dict(cls, data: dict) -> "Recording":
        """Create a Recording from its JSON form."""
        raw_events = data.get("events")
        events = [
            InteractionEvent.from_dict(e)
            for e in (raw_events if isinstance(raw_events, list) else [])
            if isinstance(e, dict)
        ]
        metadata = data.get("metadata")

        start_time = as_ms(data.get("startTime"), default=None)
        if start_time is None:
            start_time = events[0].timestamp if events else 0

        return cls(
            start_time=start_time,
            end_time=as_ms(data.get("endTime"), default=None),
            events=events,
            metadata=RecordingMetadata.from_dict(metadata if isinstance(metadata, dict) else {}),
        )

    def to_dict(self) -> dict:
        result: dict[str, Any] = {"startTime": self.start_time}
        if self.end_time is not None:
            result["endTime"] = self.end_time
        result["events"] = [event.to_dict() for event in self.events]
        result["metadata"] = self.metadata.to_dict()
        return result


@dataclass
class PageInfo:
    """A tab tracked while recording. Exists only while the tab is open."""

    id: str
    url: str
    title: str
    index: int
