"""Agent Eyes test configuration — shared fixtures for unit and integration tests."""

from __future__ import annotations

from io import BytesIO
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest
from PIL import Image


# ---------------------------------------------------------------------------
# Async backend / settings
# ---------------------------------------------------------------------------


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    """Clear the settings LRU cache between tests."""
    from agent_eyes.settings.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def settings():
    """Settings with background frame capture off and a zero settle delay."""
    from agent_eyes.settings.config import Settings

    return Settings(
        frame_stream={"enabled": False},
        trace={"enabled": False},
        browser={"settle_ms": 0},
    )


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_image() -> Callable[..., bytes]:
    """Factory returning encoded image bytes of a solid colour (optionally with a box)."""

    def _make(
        color: tuple[int, int, int] = (255, 255, 255),
        size: tuple[int, int] = (64, 48),
        fmt: str = "PNG",
        box: tuple[int, int, int, int] | None = None,
        box_color: tuple[int, int, int] = (0, 0, 0),
    ) -> bytes:
        img = Image.new("RGB", size, color)
        if box is not None:
            img.paste(box_color, box)
        buf = BytesIO()
        img.save(buf, format=fmt)
        return buf.getvalue()

    return _make


# ---------------------------------------------------------------------------
# Fake browser
# ---------------------------------------------------------------------------


def _make_page() -> MagicMock:
    """A ``MagicMock`` shaped like ``playwright.async_api.Page``."""
    page = MagicMock(name="page")
    page.url = "https://example.com/"
    page.viewport_size = {"width": 1280, "height": 800}
    page.title = AsyncMock(return_value="Example Domain")

    for name in (
        "goto",
        "evaluate",
        "screenshot",
        "add_init_script",
        "wait_for_timeout",
        "wait_for_selector",
        "wait_for_load_state",
        "set_content",
    ):
        setattr(page, name, AsyncMock(name=name))
    page.evaluate.return_value = None
    page.screenshot.return_value = b"\xff\xd8fake-jpeg"

    locator = MagicMock(name="locator")
    locator.wait_for = AsyncMock()
    locator.scroll_into_view_if_needed = AsyncMock()
    locator.click = AsyncMock()
    locator.nth.return_value = locator
    page.locator.return_value = locator
    page.get_by_text.return_value = locator

    page.keyboard.type = AsyncMock()
    page.keyboard.press = AsyncMock()
    page.accessibility.snapshot = AsyncMock(return_value={"role": "WebArea", "name": "Example Domain"})

    handlers: dict[str, list[Any]] = {}
    page.on.side_effect = lambda event, fn: handlers.setdefault(event, []).append(fn)
    page.handlers = handlers
    return page


class FakeEngine:
    """``BrowserEngine`` that hands out a mocked page and counts lifecycle calls."""

    def __init__(self, page: MagicMock) -> None:
        self.page = page
        self.launch_count = 0
        self.shutdown_count = 0

    async def launch(self, settings: Any) -> MagicMock:
        self.launch_count += 1
        return self.page

    async def shutdown(self) -> None:
        self.shutdown_count += 1


@pytest.fixture()
def page() -> MagicMock:
    return _make_page()


@pytest.fixture()
def engine(page: MagicMock) -> FakeEngine:
    return FakeEngine(page)


@pytest.fixture()
def session(settings, engine):
    """An unopened ``ActionSession`` over the fake engine."""
    from agent_eyes.browser.session import ActionSession

    return ActionSession(settings, engine=engine)


# ---------------------------------------------------------------------------
# Pytest markers
# ---------------------------------------------------------------------------


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: launches a real Chromium via Playwright")
