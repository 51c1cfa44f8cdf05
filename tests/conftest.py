"""Shared fixtures for debug agent tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "smoke: mark test as smoke test (fast, critical path - included in CI)"
    )
    config.addinivalue_line(
        "markers", "e2e: mark test as end-to-end test against a mocked browser"
    )


def make_mock_page(url: str = "about:blank") -> MagicMock:
    """Create a mock Playwright page that remembers its event handlers."""
    page = MagicMock()
    page.url = url
    page.viewport_size = {"width": 1280, "height": 720}
    page.is_closed = MagicMock(return_value=False)

    for name in ("goto", "reload", "fill", "evaluate", "set_viewport_size", "close", "title", "add_init_script"):
        setattr(page, name, AsyncMock())
    page.title.return_value = "Test Page"

    page.mouse = MagicMock()
    page.mouse.move = AsyncMock()
    page.mouse.click = AsyncMock()
    page.keyboard = MagicMock()
    page.keyboard.press = AsyncMock()
    page.main_frame = MagicMock()

    page.handlers = {}

    def on(event, handler):
        page.handlers.setdefault(event, []).append(handler)

    page.on = MagicMock(side_effect=on)
    return page


@pytest.fixture
def page_factory():
    """Factory for mock pages."""
    return make_mock_page


@pytest.fixture
def mock_page():
    """A mock page showing https://example.com/."""
    return make_mock_page("https://example.com/")


@pytest.fixture
def mock_cdp_session():
    """A mock CDP session."""
    session = MagicMock()
    session.send = AsyncMock()
    session.detach = AsyncMock()
    return session


@pytest.fixture
def mock_browser_context(mock_cdp_session):
    """A mock browser context whose new pages are mock pages."""
    context = MagicMock()
    context.created_pages = []

    async def new_page():
        page = make_mock_page()
        context.created_pages.append(page)
        return page

    context.new_page = AsyncMock(side_effect=new_page)
    context.new_cdp_session = AsyncMock(return_value=mock_cdp_session)
    context.close = AsyncMock()
    context.pages = []
    return context


@pytest.fixture
def settings(tmp_path):
    """Settings writing into a temporary recordings directory."""
    from debug_agent.config import Settings

    return Settings(
        recordings_dir=str(tmp_path / "recordings"),
        control_enabled=False,
        close_grace_ms=0,
    )


@pytest.fixture
def sample_recording_dict():
    """A small single-tab recording in wire format."""
    return {
        "startTime": 1_700_000_000_000,
        "endTime": 1_700_000_004_000,
        "events": [
            {
                "timestamp": 1_700_000_000_000,
                "type": "newtab",
                "data": {"pageId": "page_1", "url": "about:blank", "index": 0},
                "pageId": "page_1",
            },
            {
                "timestamp": 1_700_000_000_500,
                "type": "navigation",
                "data": {
                    "url": "https://prod.example.com/login?next=%2Fhome#form",
                    "pageId": "page_1",
                    "navigationType": "initial",
                    "previousUrl": "about:blank",
                },
                "pageId": "page_1",
                "pageUrl": "https://prod.example.com/login?next=%2Fhome#form",
            },
            {
                "timestamp": 1_700_000_001_500,
                "type": "click",
                "data": {"x": 120, "y": 240, "button": 0, "target": {"tag": "BUTTON", "id": "submit"}},
                "pageId": "page_1",
                "viewport": {"width": 1280, "height": 720},
            },
            {
                "timestamp": 1_700_000_002_000,
                "type": "input",
                "data": {"value": "user@example.com", "type": "email", "id": "email", "tag": "INPUT"},
                "pageId": "page_1",
            },
        ],
        "metadata": {
            "browser": "chromium",
            "platform": "linux",
            "recordedAt": "2023-11-14T22:13:20.000Z",
            "duration": 4000,
            "name": "login",
        },
    }
