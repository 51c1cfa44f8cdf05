"""Capture pipeline - record a live browser session as interaction events.

One ``BrowserRecorder`` owns one recording run: it launches a headed
Chromium with a throwaway profile, tracks every tab that opens, turns
browser signals into timestamped ``InteractionEvent`` objects and writes the
finished ``Recording`` to disk when the run stops.

Signals consumed:
- tab lifecycle (context ``page`` event, page ``close`` event)
- settled navigations (page ``load`` event)
- in-page interactions relayed as ``TRACK:`` console lines by the
  capture script (see ``tracking_script``)
- network conditions, applied locally or pushed by the control server

Usage:
    recorder = BrowserRecorder(output_path="session.json")
    await recorder.start()
    await recorder.wait_until_closed()
    path = await recorder.stop("session")
"""

import asyncio
import shutil
import tempfile
import uuid
from collections.abc import Awaitable
from pathlib import Path
from typing import Any, Optional, Union

import structlog

from ..config import Settings, get_settings
from ..errors import BrowserLaunchError
from .control import NetworkControlServer
from .models import EventType, InteractionEvent, NavigationType, PageInfo, Recording, Viewport, now_ms
from .network import (
    DEFAULT_PRESET,
    NETWORK_PRESETS,
    NetworkConditions,
    NetworkConditionTracker,
    NetworkObservation,
    get_preset,
)
from .store import recording_filename, save_recording
from .tracking_script import TrackingScriptConfig, TrackingScriptGenerator, parse_track_message

logger = structlog.get_logger()

CHROME_ERROR_PREFIX = "chrome-error://"


class NavigationClassifier:
    """Decides whether a tab's ``load`` signal is a navigation worth recording.

    A load on a new URL is a ``hard`` navigation (``initial`` for the first
    one); a load on the same URL counts as a ``refresh`` only when enough time
    has passed since the previous load, which filters double-fires from
    framework-level updates. This is a heuristic: a very fast deliberate
    reload is dropped.
    """

    def __init__(self, initial_url: str, refresh_min_interval_ms: int = 500):
        self.last_url = initial_url
        self.refresh_min_interval_ms = refresh_min_interval_ms
        self._initial = True
        self._last_load_time = 0

    def classify(self, url: str, now: int) -> Optional[tuple[str, str]]:
        """Return ``(navigation_type, previous_url)`` or None when not a navigation."""
        if url.startswith(CHROME_ERROR_PREFIX):
            return None

        is_refresh = url == self.last_url and (now - self._last_load_time) > self.refresh_min_interval_ms
        is_new = url != self.last_url
        self._last_load_time = now

        if not (is_refresh or is_new):
            return None

        if self._initial:
            navigation_type = NavigationType.INITIAL.value
        elif is_refresh:
            navigation_type = NavigationType.REFRESH.value
        else:
            navigation_type = NavigationType.HARD.value

        previous_url = self.last_url
        self.last_url = url
        self._initial = False
        return navigation_type, previous_url


class BrowserRecorder:
    """Session controller for one recording run."""

    def __init__(
        self,
        output_path: Optional[Union[str, Path]] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize the recorder.

        Args:
            output_path: Where ``stop`` writes the recording. Defaults to a
                timestamped file in ``settings.recordings_dir``.
            settings: Application settings
        """
        self.settings = settings or get_settings()
        self.output_path = Path(output_path) if output_path else None
        self.recording = Recording.new()
        self.is_recording = False
        self.pages: dict[str, PageInfo] = {}
        self.current_page_id: Optional[str] = None
        self.event_counter = 0

        self._playwright = None
        self._context = None
        self._user_data_dir: Optional[Path] = None
        self._tracked_pages: set = set()
        self._cdp_sessions: dict[str, Any] = {}
        self._network = NetworkConditionTracker()
        self._control: Optional[NetworkControlServer] = None
        self._tasks: set[asyncio.Task] = set()
        self._session_ended = asyncio.Event()
        self._last_event_time = 0
        self._script = TrackingScriptGenerator(
            TrackingScriptConfig(
                mousemove_throttle_ms=self.settings.mousemove_throttle_ms,
                scroll_debounce_ms=self.settings.scroll_debounce_ms,
            )
        ).generate()
        self.log = logger.bind(component="recorder")

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    async def start(self) -> str:
        """Launch the browser and begin recording.

        Returns:
            Session id of the new recording
        """
        if self.is_recording:
            self.log.warning("Stopping existing recording")
            name = f"_auto_stopped_{now_ms()}"
            await self.stop(name, path=Path(self.settings.recordings_dir) / recording_filename(name))

        if self._context:
            await self.cleanup()

        recordings_dir = Path(self.settings.recordings_dir)
        recordings_dir.mkdir(parents=True, exist_ok=True)
        self._user_data_dir = Path(tempfile.mkdtemp(prefix=".chromium-profile-", dir=recordings_dir))

        args = []
        if self.settings.extension_path:
            extension = str(Path(self.settings.extension_path).resolve())
            args += [f"--disable-extensions-except={extension}", f"--load-extension={extension}"]

        from playwright.async_api import async_playwright

        self.log.info("Starting recording browser", profile=str(self._user_data_dir))
        try:
            self._playwright = await async_playwright().start()
            self._context = await self._playwright.chromium.launch_persistent_context(
                str(self._user_data_dir),
                headless=False,
                viewport=None,
                args=args,
            )
        except Exception as e:
            await self.cleanup()
            raise BrowserLaunchError(f"Failed to launch browser: {e}") from e

        self.recording = Recording.new()
        self.event_counter = 0
        self._last_event_time = 0
        self._session_ended = asyncio.Event()
        self.is_recording = True

        self._context.on("close", self._on_context_closed)
        self._context.on("page", self._on_new_page)

        existing = list(self._context.pages)
        if not existing:
            existing = [await self._context.new_page()]
        for page in existing:
            await self.track_page(page)

        if self.settings.control_enabled:
            self._control = NetworkControlServer(
                self,
                host=self.settings.control_host,
                port=self.settings.control_port,
                path=self.settings.control_path,
            )
            try:
                await self._control.start()
            except OSError as e:
                self.log.warning("Network control server unavailable", error=str(e))
                self._control = None

        session_id = str(self.recording.start_time)
        self.log.info("Recording started", session_id=session_id)
        return session_id

    async def wait_until_closed(self) -> None:
        """Wait until the last tab or the browser closes, or ``request_stop`` is called."""
        await self._session_ended.wait()

    def request_stop(self) -> None:
        """Ask the controlling task to stop (e.g. from a signal handler)."""
        self._session_ended.set()

    async def stop(self, name: Optional[str] = None, path: Optional[Union[str, Path]] = None) -> str:
        """Finalize and save the recording, then release the browser.

        Returns:
            Path of the saved recording, or "" when nothing was recording
        """
        if not self.is_recording:
            return ""
        self.is_recording = False

        self.recording.finalize(name)
        target = path or self.output_path or Path(self.settings.recordings_dir) / recording_filename(name)
        saved = save_recording(self.recording, target)

        await self.cleanup()
        return str(saved)

    async def cleanup(self) -> None:
        """Release the browser, sessions, control server and temporary profile."""
        self.is_recording = False

        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

        if self._control:
            await self._control.stop()
            self._control = None

        await self._detach_all_sessions()

        if self._context:
            try:
                await self._context.close()
            except Exception as e:
                self.log.debug("Browser already closed", error=str(e))
            finally:
                self._context = None
        if self._playwright:
            try:
                await self._playwright.stop()
            finally:
                self._playwright = None

        if self._user_data_dir:
            shutil.rmtree(self._user_data_dir, ignore_errors=True)
            self._user_data_dir = None

        self._tracked_pages.clear()
        self.pages.clear()

    # ==========================================================================
    # Event log
    # ==========================================================================

    def add_event(
        self,
        event_type: str,
        data: dict,
        page_id: Optional[str] = None,
        viewport: Optional[Viewport] = None,
    ) -> Optional[InteractionEvent]:
        """Append an event stamped with the current time.

        Events arriving after the recording stopped are dropped.
        """
        if not self.is_recording:
            return None

        now = now_ms()
        if self.recording.events:
            now = max(now, self.recording.events[-1].timestamp)

        page_id = page_id or self.current_page_id
        info = self.pages.get(page_id) if page_id else None
        event = InteractionEvent(
            timestamp=now,
            type=event_type,
            data=data,
            page_id=page_id,
            page_url=info.url if info else None,
            viewport=viewport,
        )
        self.recording.append(event)
        self.event_counter += 1

        delta = now - self._last_event_time if self._last_event_time else 0
        self._last_event_time = now
        self.log.info(f"[+{delta}ms] #{self.event_counter} {event_type}", **self._describe(event))
        return event

    @staticmethod
    def _describe(event: InteractionEvent) -> dict:
        data = event.data
        if event.type == EventType.CLICK.value:
            return {"x": data.get("x"), "y": data.get("y")}
        if event.type in (EventType.INPUT.value, EventType.KEYDOWN.value):
            return {"value": str(data.get("value") or data.get("key") or "")[:30]}
        if event.type in (EventType.NAVIGATION.value, EventType.SPA_NAVIGATION.value):
            return {"url": data.get("url")}
        if event.type in (
            EventType.NETWORK_CONDITIONS_INITIAL.value,
            EventType.NETWORK_CONDITIONS_CHANGE.value,
        ):
            return {"preset": data.get("presetName")}
        return {}

    # ==========================================================================
    # Tab tracking
    # ==========================================================================

    async def _on_new_page(self, page) -> None:
        await self.track_page(page)

    async def track_page(self, page) -> Optional[str]:
        """Start tracking a tab. Tracking the same tab twice is a no-op.

        Returns:
            The logical page id, or None if the tab was already tracked
        """
        if page in self._tracked_pages:
            return None
        self._tracked_pages.add(page)

        page_id = f"page_{now_ms()}_{uuid.uuid4().hex[:9]}"
        try:
            title = await page.title()
        except Exception:
            title = ""
        self.pages[page_id] = PageInfo(id=page_id, url=page.url, title=title, index=len(self.pages))
        self.current_page_id = page_id

        await self._open_network_session(page, page_id)

        self.add_event(
            EventType.NEWTAB.value,
            {"pageId": page_id, "url": page.url, "index": len(self.pages) - 1},
            page_id=page_id,
        )

        classifier = NavigationClassifier(page.url, self.settings.refresh_min_interval_ms)

        async def on_load(_page=None):
            await self._on_load(page, page_id, classifier)

        async def on_frame_navigated(frame):
            await self._on_frame_navigated(page, page_id, frame)

        async def on_close(_page=None):
            await self._on_page_close(page, page_id)

        def on_console(message):
            self._on_console(page, page_id, message)

        page.on("load", on_load)
        page.on("framenavigated", on_frame_navigated)
        page.on("close", on_close)
        page.on("console", on_console)

        await page.add_init_script(script=self._script)
        return page_id

    async def _refresh_page_info(self, page, page_id: str, url: str) -> None:
        info = self.pages.get(page_id)
        if not info:
            return
        info.url = url
        try:
            info.title = await page.title()
        except Exception:
            # Execution context may be gone mid-navigation
            info.title = url

    async def _on_load(self, page, page_id: str, classifier: NavigationClassifier) -> None:
        url = page.url
        result = classifier.classify(url, now_ms())
        if result is None:
            return
        navigation_type, previous_url = result

        await self._refresh_page_info(page, page_id, url)
        self.add_event(
            EventType.NAVIGATION.value,
            {
                "url": url,
                "pageId": page_id,
                "navigationType": navigation_type,
                "previousUrl": previous_url,
            },
            page_id=page_id,
        )

    async def _on_frame_navigated(self, page, page_id: str, frame) -> None:
        # Recording happens on load; this only keeps PageInfo current
        if frame != page.main_frame:
            return
        url = frame.url
        if url.startswith(CHROME_ERROR_PREFIX):
            return
        await self._refresh_page_info(page, page_id, url)

    async def _on_page_close(self, page, page_id: str) -> None:
        self.add_event(EventType.CLOSETAB.value, {"pageId": page_id}, page_id=page_id)
        self.pages.pop(page_id, None)
        self._tracked_pages.discard(page)
        await self._detach_session(page_id)

        if self.pages:
            self.current_page_id = next(iter(self.pages))
        else:
            self.current_page_id = None
            self.log.info("All browser tabs closed")
            self._schedule(self._end_session_after_grace())

    def _on_console(self, page, page_id: str, message) -> None:
        tracked = parse_track_message(message.text)
        if tracked is None:
            return
        size = page.viewport_size or {}
        viewport = Viewport(
            width=size.get("width") or self.settings.default_viewport_width,
            height=size.get("height") or self.settings.default_viewport_height,
        )
        self.add_event(tracked["type"], tracked["data"], page_id=page_id, viewport=viewport)

    async def _on_context_closed(self, _context=None) -> None:
        self.log.info("Browser closed")
        await self._detach_all_sessions()
        self._schedule(self._end_session_after_grace())

    async def _end_session_after_grace(self) -> None:
        # Let events emitted alongside the close reach the log first
        await asyncio.sleep(self.settings.close_grace_ms / 1000)
        self._session_ended.set()

    def _schedule(self, coro: Awaitable) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ==========================================================================
    # Network conditions
    # ==========================================================================

    def network_state(self) -> tuple[NetworkConditions, str]:
        """Current conditions and preset name."""
        return (
            self._network.current or NETWORK_PRESETS[DEFAULT_PRESET],
            self._network.current_preset,
        )

    async def _open_network_session(self, page, page_id: str) -> None:
        try:
            session = await self._context.new_cdp_session(page)
            await session.send("Network.enable")
        except Exception as e:
            self.log.warning("Could not set up network monitoring", page_id=page_id, error=str(e))
            return
        self._cdp_sessions[page_id] = session

        if self._network.current is None:
            observation = self._network.observe(NETWORK_PRESETS[DEFAULT_PRESET], DEFAULT_PRESET)
        else:
            # New tabs inherit the conditions already in force
            conditions = self._network.current
            if conditions != NETWORK_PRESETS[DEFAULT_PRESET]:
                try:
                    await session.send("Network.emulateNetworkConditions", conditions.to_dict())
                except Exception as e:
                    self.log.error("Failed to apply network conditions", page_id=page_id, error=str(e))
            observation = NetworkObservation(
                event_type=EventType.NETWORK_CONDITIONS_INITIAL.value,
                preset_name=self._network.current_preset,
                conditions=conditions,
            )

        self.add_event(observation.event_type, observation.to_event_data(page_id), page_id=page_id)

    async def _apply_to_sessions(self, conditions: NetworkConditions) -> None:
        for page_id, session in list(self._cdp_sessions.items()):
            try:
                await session.send("Network.emulateNetworkConditions", conditions.to_dict())
            except Exception as e:
                self.log.error("Failed to apply network conditions", page_id=page_id, error=str(e))

    def _record_observation(self, observation: NetworkObservation) -> Optional[InteractionEvent]:
        return self.add_event(
            observation.event_type,
            observation.to_event_data(self.current_page_id),
        )

    def record_network_conditions(
        self,
        conditions: NetworkConditions,
        preset_name: Optional[str] = None,
    ) -> Optional[InteractionEvent]:
        """Record conditions applied by someone else; only changes yield an event."""
        observation = self._network.observe(conditions, preset_name)
        if observation is None:
            return None
        return self._record_observation(observation)

    async def apply_network_preset(self, preset_name: str, from_extension: bool = False) -> bool:
        """Apply a named preset to every tab and record the change.

        Returns:
            False when the preset is unknown
        """
        conditions = get_preset(preset_name)
        if conditions is None:
            self.log.error("Unknown network preset", preset=preset_name)
            return False

        if self._network.current is not None and self._network.current_preset == preset_name:
            return True

        await self._apply_to_sessions(conditions)
        if self.record_network_conditions(conditions, preset_name) is None:
            self._network.current_preset = preset_name

        if not from_extension and self._control:
            await self._control.notify_preset(preset_name)

        self.log.info("Network conditions changed", preset=preset_name, from_extension=from_extension)
        return True

    async def apply_custom_conditions(
        self,
        conditions: NetworkConditions,
        preset_name: Optional[str] = None,
        from_extension: bool = False,
    ) -> None:
        """Apply arbitrary conditions to every tab and record the change."""
        await self._apply_to_sessions(conditions)
        self.record_network_conditions(conditions, preset_name)

        if not from_extension and self._control:
            await self._control.notify_preset(self._network.current_preset)

        self.log.info(
            "Network conditions changed",
            preset=self._network.current_preset,
            from_extension=from_extension,
        )

    async def _detach_session(self, page_id: str) -> None:
        session = self._cdp_sessions.pop(page_id, None)
        if session is None:
            return
        try:
            await session.detach()
        except Exception as e:
            # Browser may already be gone
            self.log.debug("CDP session detach failed", page_id=page_id, error=str(e))

    async def _detach_all_sessions(self) -> None:
        for page_id in list(self._cdp_sessions):
            await self._detach_session(page_id)
