"""Recording inspection - summarize a recording before writing instrumentation."""

import json
from typing import Optional

from .recording.models import Recording

INSTRUMENTATION_SCHEMA = '''
The recording contains events with the following structure:

    InteractionEvent:
        type: str              # event type (e.g. "click", "navigation", "input")
        timestamp: int         # unix timestamp in ms
        page_id: str | None    # logical tab the event belongs to
        page_url: str | None   # URL of the tab when the event was recorded
        data: dict             # event-specific data (camelCase keys)
        viewport: Viewport | None
        payload                # typed view of data for known types

Common event types and their data:

    navigation       {url, navigationType, previousUrl, pageId}
    spa_navigation   {url, previousUrl, method, title}
    click            {x, y, clientX, clientY, button, target: {...}}
    input            {value, type, name, id, tag}
    keydown          {key, code, keyCode, ctrlKey, shiftKey, altKey, metaKey}
    scroll           {x, y, width, height, viewportWidth, viewportHeight}
    newtab/closetab  {pageId, url?, index?}
    network_conditions_initial/change  {presetName, conditions, pageId}

Instrumentation is Python source. It may define the hooks at module level,
bind a ``hooks`` mapping/object, or evaluate to a factory taking the page:

    setup(ctx)                    once, after the first tab opens
    on_before_event(event, ctx)   before each event
    on_after_event(event, ctx)    after each event
    on_complete(ctx)              at the end; the return value is printed

ctx is a dict holding "page" (Playwright async Page) and, for per-event
hooks, "event_index". Hooks may be async.

Example instrumentation file:

    clicks = []

    async def on_after_event(event, ctx):
        if event.type == "click":
            await ctx["page"].screenshot(path=f"click-{ctx['event_index']}.png")
            clicks.append(event.data["x"])

    async def on_complete(ctx):
        return {"final_url": ctx["page"].url, "title": await ctx["page"].title(), "clicks": clicks}
'''


def inspect_recording(recording: Recording, sample: int = 2) -> dict:
    """Summary, per-type counts and sample events of a recording.

    Args:
        recording: Recording to inspect
        sample: Maximum sample events per type (0 for none)

    Returns:
        Dict with ``summary``, ``event_types`` and ``samples``
    """
    grouped = recording.event_types()
    duration = recording.duration_ms
    return {
        "summary": {
            "duration_s": round(duration / 1000, 2) if duration is not None else None,
            "total_events": recording.event_count,
            "browser": recording.metadata.browser,
            "recorded_at": recording.metadata.recorded_at,
            "name": recording.metadata.name,
        },
        "event_types": {event_type: len(events) for event_type, events in grouped.items()},
        "samples": {
            event_type: [event.to_dict() for event in events[:sample]]
            for event_type, events in grouped.items()
        }
        if sample > 0
        else {},
    }


def _indent(text: str, prefix: str) -> str:
    return "\n".join(prefix + line for line in text.splitlines())


def format_report(report: dict, schema: bool = False, show_events: bool = True) -> str:
    """Render an inspection report as console text."""
    summary = report["summary"]
    duration: Optional[float] = summary["duration_s"]
    lines = [
        "",
        "Recording Analysis",
        "",
        "Recording Info:",
        f"  Duration: {f'{duration:.2f}s' if duration is not None else 'unknown'}",
        f"  Total Events: {summary['total_events']}",
        f"  Browser: {summary['browser'] or 'unknown'}",
        f"  Recorded At: {summary['recorded_at'] or 'unknown'}",
    ]

    if not report["event_types"]:
        lines += ["", "No events found in recording"]
        return "\n".join(lines)

    if show_events:
        lines += ["", "Event Types:"]
        lines += [f"  {event_type}: {count} events" for event_type, count in report["event_types"].items()]

    for event_type, events in report["samples"].items():
        lines += ["", f"  {event_type} events (showing up to {len(events)}):"]
        for i, event in enumerate(events, 1):
            lines.append(f"    Sample {i}:")
            lines.append(_indent(json.dumps(event, indent=4), "      "))

    if schema:
        lines += ["", "Event Schema for Instrumentation:", INSTRUMENTATION_SCHEMA]
        lines += ["Detected Event Types in This Recording:"]
        lines += [f"  - {event_type}" for event_type in report["event_types"]]

    return "\n".join(lines)
