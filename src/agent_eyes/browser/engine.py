"""Browser engine capability used by ``ActionSession``.

The session never launches a browser itself: it asks a ``BrowserEngine`` for a
ready ``Page`` at open time and hands it back at close time.  The default
engine launches headless Chromium through Playwright's async API; tests plug
in a fake engine that returns a mocked page.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from agent_eyes.settings.config import BrowserSettings

if TYPE_CHECKING:
    from playwright.async_api import Browser, BrowserContext, Page, Playwright

logger = logging.getLogger(__name__)

# Keep WebGL / WebGPU content renderable in headless Chromium.
_DEFAULT_FLAGS: tuple[str, ...] = ("--enable-unsafe-webgpu", "--use-angle=auto")


@runtime_checkable
class BrowserEngine(Protocol):
    """Opens and tears down one remote page context."""

    async def launch(self, settings: BrowserSettings) -> Page:
        """Start the engine and return a ready page."""
        ...

    async def shutdown(self) -> None:
        """Release every resource acquired by :meth:`launch`."""
        ...


class PlaywrightEngine:
    """Chromium via ``playwright.async_api`` — one browser, one context, one page."""

    def __init__(self) -> None:
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None

    async def launch(self, settings: BrowserSettings) -> Page:
        from playwright.async_api import async_playwright

        self._playwright = await async_playwright().start()
        launch_args: dict = {
            "headless": settings.headless,
            "args": [*_DEFAULT_FLAGS, *settings.flags],
        }
        if settings.channel:
            launch_args["channel"] = settings.channel

        self._browser = await self._playwright.chromium.launch(**launch_args)

        context_args: dict = {
            "viewport": {"width": settings.viewport_width, "height": settings.viewport_height},
        }
        if settings.user_agent:
            context_args["user_agent"] = settings.user_agent

        self._context = await self._browser.new_context(**context_args)
        self._page = await self._context.new_page()
        logger.info(
            "Browser started (headless=%s, viewport=%dx%d)",
            settings.headless,
            settings.viewport_width,
            settings.viewport_height,
        )
        return self._page

    async def shutdown(self) -> None:
        """Close page, context, browser and driver; each step is best-effort."""
        for name, resource in (
            ("page", self._page),
            ("context", self._context),
            ("browser", self._browser),
        ):
            if resource is None:
                continue
            try:
                await resource.close()
            except Exception as e:
                logger.debug("Closing %s failed (non-fatal): %s", name, e)

        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.debug("Stopping Playwright failed (non-fatal): %s", e)

        self._page = None
        self._context = None
        self._browser = None
        self._playwright = None
        logger.info("Browser stopped")
