"""Replay engine - re-execute a recording against a fresh browser.

The engine walks the recorded events strictly in order, one at a time:

    IDLE → LAUNCHING → REPLAYING(i) for each event → COMPLETING → CLOSED

For every event it resolves the tab the event belongs to, runs the
``on_before_event`` hook, dispatches the event to Playwright, runs ``setup``
when the event created the first tab, runs ``on_after_event`` and then waits
for the recorded gap to the next event (scaled by speed, capped).

Failures are contained: an event that raises is logged and skipped, a hook
that raises is logged and ignored. Only a browser that fails to launch or a
recording that cannot be loaded aborts the run. Browser resources are always
released, whichever way the loop ends.

Usage:
    replay = Replay(ReplayOptions(speed=2.0, headless=True))
    replay.set_instrumentation_code(source)
    context = await replay.run("recordings/checkout.json")
    print(context.final_results)
"""

import asyncio
import json
import os
import platform
import sys
from pathlib import Path
from typing import Any, Optional, Union
from urllib.parse import urlsplit, urlunsplit

import structlog

from ..config import Settings, get_settings
from ..errors import BrowserLaunchError
from ..recording.models import (
    ClickPayload,
    EventType,
    InputPayload,
    InteractionEvent,
    KeydownPayload,
    NavigationPayload,
    NetworkConditionsPayload,
    Recording,
    ScrollPayload,
    ViewportPayload,
    now_ms,
)
from ..recording.network import NetworkConditions
from ..recording.store import load_recording, resolve_recording_path
from ..utils.logging import LogContext, ReplayProgressLogger, get_logger
from .instrumentation import Instrumentation, InstrumentationHooks
from .models import ReplayContext, ReplayOptions, ReplayState

logger = structlog.get_logger()

INSTRUMENT_PREFIX = "INSTRUMENT:"

# Navigation errors expected while the tab is emulated offline
CONNECTIVITY_ERRORS = (
    "ERR_INTERNET_DISCONNECTED",
    "ERR_NAME_NOT_RESOLVED",
    "ERR_NETWORK_CHANGED",
    "ERR_ABORTED",
)


def compute_delay(
    current_ts: int,
    next_ts: Optional[int],
    speed: float,
    max_delay_ms: int = 3000,
    min_speed: float = 0.1,
) -> int:
    """Wait in ms between an event and the next one.

    The recorded gap is divided by the speed multiplier (never below
    ``min_speed``) and clamped to ``[0, max_delay_ms]``. The last event has
    no trailing wait.
    """
    if next_ts is None:
        return 0
    delay = round((next_ts - current_ts) / max(min_speed, speed))
    return max(0, min(delay, max_delay_ms))


def replace_base_url(original_url: str, new_base_url: str) -> str:
    """Swap scheme, host and port of a URL, keeping path, query and fragment.

    ``about:blank`` and URLs that cannot be parsed are returned unchanged.
    """
    if not original_url or original_url == "about:blank":
        return original_url

    original = urlsplit(original_url)
    base = urlsplit(new_base_url)
    if not (original.scheme and original.netloc and base.scheme and base.netloc):
        logger.warning("Failed to parse URL for replacement", url=original_url, base=new_base_url)
        return original_url

    host = base.netloc.rsplit("@", 1)[-1]
    return urlunsplit((base.scheme, host, original.path or "/", original.query, original.fragment))


def is_connectivity_error(message: str) -> bool:
    return any(code in message for code in CONNECTIVITY_ERRORS)


def is_wsl() -> bool:
    """True when running under Windows Subsystem for Linux."""
    if sys.platform != "linux":
        return False
    if os.environ.get("WSL_DISTRO_NAME") or os.environ.get("WSL_INTEROP"):
        return True
    release = platform.release().lower()
    return "microsoft" in release or "wsl" in release


def has_display() -> bool:
    return bool(os.environ.get("DISPLAY") or os.environ.get("WAYLAND_DISPLAY"))


class Replay:
    """Replays one recording against a fresh Chromium instance."""

    def __init__(
        self,
        options: Optional[ReplayOptions] = None,
        settings: Optional[Settings] = None,
    ):
        self.options = options or ReplayOptions()
        self.settings = settings or get_settings()
        self.state = ReplayState.IDLE
        self.event_index: Optional[int] = None
        self.log = get_logger(component="replay")

        self._instrumentation_code: Optional[str] = None
        self._instrumentation: Optional[Instrumentation] = None
        self._hooks = InstrumentationHooks()
        self._stopped = False

        self._playwright = None
        self._browser = None
        self._context = None
        self._pages: dict[str, Any] = {}
        self._first_page = None
        self._cdp_sessions: dict[str, Any] = {}
        self._offline: dict[str, bool] = {}
        self._result = ReplayContext()

    def set_instrumentation_code(self, code: str) -> None:
        """Use instrumentation source for the next run."""
        self._instrumentation_code = code

    def stop(self) -> None:
        """Stop before the next event. The event in flight is allowed to finish."""
        self._stopped = True

    @property
    def hooks(self) -> InstrumentationHooks:
        return self._hooks

    # ==========================================================================
    # Run
    # ==========================================================================

    async def run(
        self,
        recording_or_path: Union[Recording, dict, str, Path],
        speed: Optional[float] = None,
    ) -> ReplayContext:
        """Replay a recording.

        Args:
            recording_or_path: A Recording, its dict form, a ``.json`` path or
                a bare recording name under ``settings.recordings_dir``
            speed: Overrides ``options.speed`` when given

        Returns:
            ReplayContext with logs, network activity and the instrumentation result

        Raises:
            RecordingLoadError: recording missing or unparseable
            BrowserLaunchError: browser could not be started
        """
        if speed is not None:
            self.options.speed = speed

        self._stopped = False
        recording = self._resolve_recording(recording_or_path)
        events = recording.events

        self._result = ReplayContext(started_at=now_ms())
        self._pages = {}
        self._first_page = None
        self._cdp_sessions = {}
        self._offline = {}

        if self._instrumentation_code:
            self._instrumentation = Instrumentation(self._instrumentation_code)
            self._hooks = self._instrumentation.hooks
        else:
            self._instrumentation = None
            self._hooks = InstrumentationHooks()

        progress = ReplayProgressLogger(len(events), self.options.speed)
        self.state = ReplayState.LAUNCHING

        try:
            await self._launch()
            progress.replay_started(
                url_override=self.options.url_override,
                instrumented=self._hooks.loaded,
            )

            for i, event in enumerate(events):
                if self._stopped:
                    self._note("Replay terminated", event_index=i)
                    self._result.stopped = True
                    break

                self.state = ReplayState.REPLAYING
                self.event_index = i
                next_event = events[i + 1] if i + 1 < len(events) else None
                delay = compute_delay(
                    event.timestamp,
                    next_event.timestamp if next_event else None,
                    self.options.speed,
                    max_delay_ms=self.settings.replay_max_delay_ms,
                    min_speed=self.settings.min_speed,
                )

                progress.event_dispatched(i, event.type, page_id=event.page_id)
                await self._replay_step(i, event, progress)

                if delay > 0 and next_event is not None:
                    await self._pause(delay)

            self.state = ReplayState.COMPLETING
            await self._complete()
            self._result.completed = not self._result.stopped
        finally:
            await self._cleanup()
            self.state = ReplayState.CLOSED
            self._result.ended_at = now_ms()
            self._result.hook_errors = list(self._hooks.errors)
            progress.replay_finished(self._result.stopped, self._result.duration_ms)

        return self._result

    def _resolve_recording(self, recording_or_path: Union[Recording, dict, str, Path]) -> Recording:
        if isinstance(recording_or_path, Recording):
            return recording_or_path
        if isinstance(recording_or_path, dict):
            return Recording.from_dict(recording_or_path)
        path = resolve_recording_path(recording_or_path, self.settings.recordings_dir)
        return load_recording(path)

    async def _launch(self) -> None:
        from playwright.async_api import async_playwright

        headless = self.options.headless
        if not headless and is_wsl() and not has_display():
            self.log.warning("WSL detected with no GUI, forcing headless mode")
            headless = True

        args = list(self.settings.browser_args)
        if self.options.devtools and not headless:
            args.append("--auto-open-devtools-for-tabs")

        self.log.info("Launching browser", headless=headless, devtools=self.options.devtools)
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(headless=headless, args=args)
            self._context = await self._browser.new_context()
        except Exception as e:
            raise BrowserLaunchError(f"Failed to launch browser: {e}") from e

    async def _pause(self, delay_ms: int) -> None:
        await asyncio.sleep(delay_ms / 1000)

    # ==========================================================================
    # Per-event state machine
    # ==========================================================================

    def _resolve_page(self, event: InteractionEvent) -> tuple[Optional[str], Any]:
        """Tab for an event.

        An event naming a tab resolves to that tab only; if the tab is not
        open (closed, or not yet opened) the event has no target. Events
        without a pageId fall back to the first tracked tab.
        """
        if event.page_id:
            page = self._pages.get(event.page_id)
            return (event.page_id, page) if page is not None else (None, None)
        return next(iter(self._pages.items()), (None, None))

    async def _replay_step(self, index: int, event: InteractionEvent, progress: ReplayProgressLogger) -> None:
        with LogContext(event_index=index, event_type=event.type):
            await self._run_step(index, event, progress)

    async def _run_step(self, index: int, event: InteractionEvent, progress: ReplayProgressLogger) -> None:
        try:
            _, page = self._resolve_page(event)
            if page is not None and self._hooks.has("on_before_event"):
                await self._hooks.call(
                    "on_before_event",
                    event,
                    {"page": page, "event_index": index},
                    event_index=index,
                )

            new_page = await self._dispatch(index, event)

            if new_page is not None and self._first_page is None:
                self._first_page = new_page
                if self._instrumentation is not None:
                    self._hooks = self._instrumentation.bind(new_page)
                await self._hooks.call("setup", {"page": new_page})

            _, page = self._resolve_page(event)
            if page is not None and self._hooks.has("on_after_event"):
                await self._hooks.call(
                    "on_after_event",
                    event,
                    {"page": page, "event_index": index},
                    event_index=index,
                )

            self._result.events_replayed += 1
        except Exception as e:
            progress.event_failed(index, event.type, str(e))
            self._result.event_errors.append(
                {"index": index, "type": event.type, "error": str(e)}
            )

    async def _dispatch(self, index: int, event: InteractionEvent) -> Any:
        """Apply one event to the browser. Returns the new page for ``newtab``."""
        if event.type == EventType.NEWTAB.value:
            return await self._open_tab(index, event)

        if event.type == EventType.CLOSETAB.value:
            await self._close_tab(event)
            return None

        key, page = self._resolve_page(event)
        if page is None:
            self.log.debug("No tab for event", event_index=index, event_type=event.type)
            return None

        match event.type:
            case EventType.NAVIGATION.value:
                await self._navigate(key, page, event.payload)

            case EventType.CLICK.value:
                await self._click(page, event.payload)

            case EventType.INPUT.value:
                await self._input(page, event.payload)

            case EventType.KEYDOWN.value:
                await self._keydown(page, event.payload)

            case EventType.SCROLL.value:
                await self._scroll(page, event.payload)

            case EventType.VIEWPORT_RESIZE.value:
                await self._resize(page, event.payload)

            case EventType.NETWORK_CONDITIONS_INITIAL.value | EventType.NETWORK_CONDITIONS_CHANGE.value:
                await self._apply_network(key, page, event.payload)

            case _:
                # spa_navigation, focus, submit, mousemove and unknown types
                # have no direct replay action
                self.log.debug("Nothing to replay", event_index=index, event_type=event.type)

        return None

    # ==========================================================================
    # Event handlers
    # ==========================================================================

    async def _open_tab(self, index: int, event: InteractionEvent) -> Any:
        page = await self._context.new_page()
        self._pages[event.page_id or f"tab_{index}"] = page
        self._attach_listeners(page)
        self._note("New tab opened", page_id=event.page_id)
        return page

    async def _close_tab(self, event: InteractionEvent) -> None:
        if not event.page_id:
            return
        page = self._pages.pop(event.page_id, None)
        if page is None:
            return
        await self._detach_session(event.page_id)
        try:
            await page.close()
        except Exception as e:
            self.log.debug("Tab already closed", page_id=event.page_id, error=str(e))
        self._note("Tab closed", page_id=event.page_id)

    async def _navigate(self, key: str, page, payload: NavigationPayload) -> None:
        url = payload.url
        if url and url != "about:blank" and self.options.url_override:
            rewritten = replace_base_url(url, self.options.url_override)
            if rewritten != url:
                self._note(f"URL override: {url} → {rewritten}")
            url = rewritten

        if not url or url == "about:blank":
            return

        current = page.url
        if not payload.is_refresh and current == url:
            return

        timeout = self.settings.navigation_timeout_ms
        try:
            if payload.is_refresh and current == url:
                await page.reload(wait_until="domcontentloaded", timeout=timeout)
                self._note(f"Refresh page: {url}")
            else:
                await page.goto(url, wait_until="domcontentloaded", timeout=timeout)
                self._note(f"Navigate to {url}")
        except Exception as e:
            message = str(e)
            if is_connectivity_error(message) and self._offline.get(key):
                self.log.warning("Navigation failed (offline)", url=url)
                self._result.logs.append(f"Navigation failed (offline): {url}")
            else:
                self.log.error("Navigation error", url=url, error=message)
                self._result.logs.append(f"Navigation error: {message}")

    async def _click(self, page, payload: ClickPayload) -> None:
        if payload.x is None or payload.y is None:
            return
        await page.mouse.move(payload.x, payload.y)
        await page.mouse.click(payload.x, payload.y)
        self._note(f"Click at ({payload.x}, {payload.y})")

    async def _input(self, page, payload: InputPayload) -> None:
        if payload.value is None:
            return
        selector = payload.selector
        if selector:
            try:
                await page.fill(selector, payload.value)
            except Exception as e:
                # Field may not exist any more after layout drift
                self.log.debug("Input target not found", selector=selector, error=str(e))
        self._note(f'Input: "{payload.value[:30]}"')

    async def _keydown(self, page, payload: KeydownPayload) -> None:
        if not payload.key:
            return
        await page.keyboard.press(payload.key)
        self._note(f"Keydown: {payload.key}")

    async def _scroll(self, page, payload: ScrollPayload) -> None:
        if payload.y is None:
            return
        await page.evaluate("([x, y]) => window.scrollTo(x, y)", [payload.x, payload.y])
        self._note(f"Scroll to Y: {payload.y}")

    async def _resize(self, page, payload: ViewportPayload) -> None:
        if payload.width is None or payload.height is None:
            return
        try:
            await page.set_viewport_size({"width": payload.width, "height": payload.height})
            self._note(f"Resize viewport to {payload.width}x{payload.height}")
        except Exception as e:
            self.log.error("Viewport resize error", error=str(e))

    async def _apply_network(self, key: str, page, payload: NetworkConditionsPayload) -> None:
        if not payload.conditions:
            return
        conditions = NetworkConditions.from_dict(payload.conditions)
        try:
            session = self._cdp_sessions.get(key)
            if session is None:
                session = await self._context.new_cdp_session(page)
                self._cdp_sessions[key] = session
                await session.send("Network.enable")

            await session.send("Network.emulateNetworkConditions", conditions.to_dict())
            self._offline[key] = conditions.offline
            self._note(f"Network conditions set to: {payload.preset_name}")
        except Exception as e:
            self.log.error("Network conditions error", error=str(e))

    # ==========================================================================
    # Listeners
    # ==========================================================================

    def _attach_listeners(self, page) -> None:
        page.on("console", self._on_console)
        page.on("request", self._on_request)
        page.on("response", self._on_response)
        page.on("requestfailed", self._on_request_failed)

    def _on_console(self, message) -> None:
        text = message.text
        timestamp = now_ms()
        self._result.console_logs.append(
            {
                "type": message.type,
                "text": text,
                "timestamp": timestamp,
                "location": message.location,
            }
        )
        if text.startswith(INSTRUMENT_PREFIX):
            try:
                data = json.loads(text[len(INSTRUMENT_PREFIX):])
            except json.JSONDecodeError:
                self.log.debug("Malformed instrumentation message", text=text[:100])
                return
            self._result.instrumentation_events.append({"timestamp": timestamp, "data": data})

    def _on_request(self, request) -> None:
        self._result.network.requests.append(
            {
                "url": request.url,
                "method": request.method,
                "headers": request.headers,
                "timestamp": now_ms(),
            }
        )

    def _on_response(self, response) -> None:
        self._result.network.responses.append(
            {
                "url": response.url,
                "status": response.status,
                "ok": response.ok,
                "timestamp": now_ms(),
            }
        )

    def _on_request_failed(self, request) -> None:
        self._result.network.failures.append(
            {
                "url": request.url,
                "errorText": request.failure,
                "timestamp": now_ms(),
            }
        )

    def _note(self, message: str, **context) -> None:
        self.log.info(message, **context)
        self._result.logs.append(message)

    # ==========================================================================
    # Completion and cleanup
    # ==========================================================================

    async def _complete(self) -> None:
        if not self._hooks.has("on_complete"):
            return
        active = [page for page in self._pages.values() if not page.is_closed()]
        page = active[-1] if active else self._first_page
        if page is None:
            return
        self._result.final_results = await self._hooks.call("on_complete", {"page": page})

    async def _detach_session(self, key: str) -> None:
        session = self._cdp_sessions.pop(key, None)
        if session is None:
            return
        try:
            await session.detach()
        except Exception as e:
            self.log.debug("CDP session detach failed", page_id=key, error=str(e))

    async def _cleanup(self) -> None:
        """Release sessions, context, browser and the playwright driver."""
        for key in list(self._cdp_sessions):
            await self._detach_session(key)

        if self._context:
            try:
                await self._context.close()
            except Exception as e:
                self.log.debug("Context close failed", error=str(e))
            self._context = None
        if self._browser:
            try:
                await self._browser.close()
            except Exception as e:
                self.log.debug("Browser close failed", error=str(e))
            self._browser = None
        if self._playwright:
            try:
                await self._playwright.stop()
            except Exception as e:
                self.log.debug("Playwright stop failed", error=str(e))
            self._playwright = None
