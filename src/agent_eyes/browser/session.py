"""ActionSession — instrumented primitive actions against one live page.

The session owns everything mutable about one automation context: the page
handle obtained from a ``BrowserEngine``, the console / network ring buffers,
the metrics accumulator, the optional JSONL trace and the event bus.

Every primitive action has the same shape::

    validate args → call Playwright with an explicit timeout
        success → record metrics, trace, emit ``action_completed``
        failure → classify into a typed ``EyesError``, record metrics,
                  trace, emit ``action_failed``, raise

While open, two background activities run on the event loop: Playwright
listeners append console / network events to the ring buffers, and a preview
task captures a low-rate screenshot stream.  Neither ever raises to the
caller; a missed frame is just skipped.

Callers must serialize actions on one session (one in-flight action at a
time); there is no internal locking between foreground actions.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeVar
from uuid import uuid4

from playwright.async_api import Error as PlaywrightError

from agent_eyes.browser.buffers import ConsoleRecord, NetworkRecord, RingBuffer
from agent_eyes.browser.canvas_hook import detect_canvas, inject_canvas_hook, last_canvas_frame
from agent_eyes.browser.dom import accessibility_snapshot, serialize_dom, suggest_selectors
from agent_eyes.browser.engine import BrowserEngine, PlaywrightEngine
from agent_eyes.browser.guard import GuardPolicy, authorize
from agent_eyes.browser.metrics import MetricsCollector
from agent_eyes.browser.navigation import WAIT_CONDITIONS, WaitUntil, goto
from agent_eyes.browser.visual import dom_signature, to_data_url
from agent_eyes.exceptions import (
    BadInputError,
    ElementNotFoundError,
    EyesError,
    ScriptError,
    SessionClosedError,
    to_eyes_error,
)
from agent_eyes.models.observation import (
    CanvasInfo,
    DomSignature,
    Screenshot,
    SessionState,
    StabilityReport,
    Viewport,
)
from agent_eyes.models.plan import WaitMode
from agent_eyes.monitoring.event_bus import EventBus, EventType
from agent_eyes.monitoring.trace import TraceRecord, TraceWriter
from agent_eyes.settings.config import Settings, get_settings

if TYPE_CHECKING:
    from playwright.async_api import ConsoleMessage, Page, Request

logger = logging.getLogger(__name__)

T = TypeVar("T")

MIN_TYPE_DELAY_MS = 0
MAX_TYPE_DELAY_MS = 200
DEFAULT_SCREENSHOT_QUALITY = 70
MIN_FRAME_FPS = 0.5
MAX_FRAME_FPS = 8.0
MIN_FRAME_PERIOD_MS = 200

_MIME_TYPES = {"jpeg": "image/jpeg", "png": "image/png"}


def frame_period_ms(fps: float) -> int:
    """Preview period for *fps*, clamped to ``[0.5, 8]`` fps and never below 200 ms."""
    clamped = min(max(fps, MIN_FRAME_FPS), MAX_FRAME_FPS)
    return max(MIN_FRAME_PERIOD_MS, int(1000 / clamped))


class ActionSession:
    """One exclusively-owned browser automation session.

    Args:
        settings: Resolved settings; defaults to ``get_settings()``.
        engine: Browser engine capability; defaults to ``PlaywrightEngine``.
        event_bus: Event bus to publish on; a private one is created if omitted.
        policy: Navigation guard policy; defaults to the ``guard`` settings.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        engine: BrowserEngine | None = None,
        event_bus: EventBus | None = None,
        policy: GuardPolicy | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._engine = engine or PlaywrightEngine()
        self.session_id = uuid4().hex[:12]
        self.events = event_bus or EventBus(session_id=self.session_id)
        self.policy = policy or GuardPolicy.from_settings(self._settings.guard)

        buffers = self._settings.buffers
        self._console: RingBuffer[ConsoleRecord] = RingBuffer(buffers.console_capacity)
        self._network: RingBuffer[NetworkRecord] = RingBuffer(buffers.network_capacity)
        self._metrics = MetricsCollector()

        trace = self._settings.trace
        self._trace: TraceWriter | None = TraceWriter(trace.file or None) if trace.enabled else None

        self._page: Page | None = None
        self._closed = asyncio.Event()
        self._frame_task: asyncio.Task[None] | None = None
        self.latest_frame: bytes | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def is_open(self) -> bool:
        return self._page is not None

    async def open(self) -> None:
        """Launch the engine, install hooks and listeners, start the preview stream."""
        if self._page is not None:
            return

        self._closed = asyncio.Event()
        try:
            page = await self._engine.launch(self._settings.browser)
            if self._settings.browser.canvas_hook:
                await inject_canvas_hook(page)
        except Exception as exc:
            logger.error("Session %s failed to open: %s", self.session_id, exc)
            await self._shutdown_engine()
            err = to_eyes_error(exc, "Failed to open session")
            if err is exc:
                raise
            raise err from exc

        self._subscribe(page)
        self._page = page

        if self._settings.frame_stream.enabled:
            self._frame_task = asyncio.create_task(self._frame_loop(), name=f"eyes-frames-{self.session_id}")

        logger.info("Session %s opened", self.session_id)
        await self.events.emit(EventType.SESSION_OPENED, {"session_id": self.session_id})

    async def close(self) -> None:
        """Stop background work and release the engine.  Safe to call repeatedly."""
        if self._page is None:
            return

        self._closed.set()
        self._page = None

        if self._frame_task is not None:
            self._frame_task.cancel()
            try:
                await self._frame_task
            except asyncio.CancelledError:
                pass
            self._frame_task = None

        await self._shutdown_engine()
        if self._trace is not None:
            self._trace.close()

        logger.info("Session %s closed (%s)", self.session_id, self._metrics.summary()["actions"])
        await self.events.emit(EventType.SESSION_CLOSED, {"metrics": self.metrics()})

    async def __aenter__(self) -> ActionSession:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def pause(self, ms: float) -> None:
        """Sleep for *ms* milliseconds, waking immediately if the session closes.

        Raises:
            SessionClosedError: If the session is not open or closes during the pause.
        """
        self._require_page()
        if await self._wait_closed(max(ms, 0) / 1000):
            raise SessionClosedError("Session closed while paused")

    # ------------------------------------------------------------------
    # Primitive actions
    # ------------------------------------------------------------------

    async def navigate(
        self,
        url: str,
        *,
        wait_until: WaitUntil = "load",
        timeout_ms: int | None = None,
    ) -> None:
        """Navigate to *url* after it passes the navigation guard.

        Raises:
            BadInputError: Missing / malformed URL or unknown wait condition.
            SecurityBlockedError: The guard rejected the URL.
            NavigationTimeoutError: The wait condition was not met in time.
        """
        timeout = timeout_ms if timeout_ms is not None else self._settings.browser.navigation_timeout_ms

        async def _navigate(page: Page) -> None:
            if not url:
                raise BadInputError("navigate.url is required")
            if wait_until not in WAIT_CONDITIONS:
                raise BadInputError(f"navigate.wait must be one of {', '.join(WAIT_CONDITIONS)}")
            target = authorize(url, self.policy)
            await goto(page, target, wait_until=wait_until, timeout_ms=timeout)
            await self._settle(page)

        payload = {"url": url, "wait": wait_until, "timeout_ms": timeout}
        await self._run_action("navigate", payload, _navigate)

    async def click(
        self,
        selector: str | None = None,
        *,
        text: str | None = None,
        nth: int | None = None,
        timeout_ms: int | None = None,
    ) -> None:
        """Click the element matched by *selector* or by fuzzy visible *text*.

        On failure a "did you mean" pass ranks live ``tag#id.class``
        signatures against the selector and attaches the closest five as the
        error hint.

        Raises:
            BadInputError: Not exactly one of *selector* / *text* given.
            ElementNotFoundError: The element never became visible or clickable.
        """
        timeout = timeout_ms if timeout_ms is not None else self._settings.browser.action_timeout_ms

        async def _click(page: Page) -> None:
            if bool(selector) == bool(text):
                raise BadInputError("click requires exactly one of selector or text")
            locator = page.locator(selector) if selector else page.get_by_text(text, exact=False)
            if nth is not None:
                locator = locator.nth(nth)
            try:
                await locator.wait_for(state="visible", timeout=timeout)
                await locator.scroll_into_view_if_needed(timeout=timeout)
                await locator.click(timeout=timeout)
            except PlaywrightError as exc:
                hint = ""
                if selector:
                    similar = await suggest_selectors(page, selector)
                    if similar:
                        hint = f"Did you mean: {', '.join(similar)}"
                raise ElementNotFoundError(
                    f"Element not found for click: {selector or text}",
                    hint=hint,
                    data={"selector": selector, "text": text, "nth": nth},
                ) from exc
            await self._settle(page)

        payload = {"selector": selector, "text": text, "nth": nth, "timeout_ms": timeout}
        await self._run_action("click", payload, _click)

    async def type_text(self, selector: str, text: str = "", *, delay_ms: int | None = None) -> None:
        """Focus *selector* by clicking it, then type *text* key by key.

        The inter-key delay is clamped to ``[0, 200]`` ms.

        Raises:
            BadInputError: No selector given.
            ElementNotFoundError: The element could not be focused or typed into.
        """
        requested = delay_ms if delay_ms is not None else self._settings.browser.type_delay_ms
        delay = min(max(requested, MIN_TYPE_DELAY_MS), MAX_TYPE_DELAY_MS)
        timeout = self._settings.browser.action_timeout_ms

        async def _type(page: Page) -> None:
            if not selector:
                raise BadInputError("type.selector is required")
            locator = page.locator(selector)
            try:
                await locator.wait_for(state="visible", timeout=timeout)
                await locator.click(timeout=timeout)
                await page.keyboard.type(text or "", delay=delay)
            except PlaywrightError as exc:
                raise ElementNotFoundError(
                    f"Failed to type into element: {selector}", data={"selector": selector}
                ) from exc

        payload = {"selector": selector, "text": text, "delay_ms": delay}
        await self._run_action("type", payload, _type)

    async def wait(self, mode: str, *, selector: str | None = None, timeout_ms: int | None = None) -> None:
        """Wait for a visible selector, network idle, or a fixed timeout.

        Raises:
            BadInputError: Unknown mode, or selector mode without a selector.
            ElementNotFoundError: The selector never became visible.
        """
        timeout = timeout_ms if timeout_ms is not None else self._settings.browser.action_timeout_ms

        async def _wait(page: Page) -> None:
            try:
                wait_mode = WaitMode(mode)
            except ValueError:
                raise BadInputError(f"wait mode must be selector|networkidle|timeout, got {mode!r}") from None

            if wait_mode is WaitMode.SELECTOR:
                if not selector:
                    raise BadInputError("wait.selector is required for selector mode")
                try:
                    await page.wait_for_selector(selector, state="visible", timeout=timeout)
                except PlaywrightError as exc:
                    raise ElementNotFoundError(
                        f"Selector not visible within {timeout}ms: {selector}", data={"selector": selector}
                    ) from exc
            elif wait_mode is WaitMode.NETWORK_IDLE:
                await page.wait_for_load_state("networkidle", timeout=timeout)
            else:
                await page.wait_for_timeout(timeout)

        payload = {"mode": mode, "selector": selector, "timeout_ms": timeout}
        await self._run_action("wait", payload, _wait)

    async def scroll(
        self,
        *,
        x: float | None = None,
        y: float | None = None,
        into_view_selector: str | None = None,
    ) -> None:
        """Scroll an element into view and/or the window to ``(x, y)``.

        Both may be combined; with neither this is a no-op.
        """
        timeout = self._settings.browser.action_timeout_ms

        async def _scroll(page: Page) -> None:
            if into_view_selector:
                try:
                    await page.locator(into_view_selector).scroll_into_view_if_needed(timeout=timeout)
                except PlaywrightError as exc:
                    raise ElementNotFoundError(
                        f"Cannot scroll into view: {into_view_selector}",
                        data={"selector": into_view_selector},
                    ) from exc
            if x is not None or y is not None:
                await page.evaluate("([x, y]) => window.scrollTo(x, y)", [x or 0, y or 0])

        payload = {"x": x, "y": y, "into_view_selector": into_view_selector}
        await self._run_action("scroll", payload, _scroll)

    async def key_press(self, key: str) -> None:
        """Send one logical key event (e.g. ``Enter``, ``Control+A``)."""

        async def _press(page: Page) -> None:
            if not key:
                raise BadInputError("keys.press is required")
            await page.keyboard.press(key)

        await self._run_action("keys", {"press": key}, _press)

    async def eval_script(self, expression: str) -> Any:
        """Evaluate *expression* in the page and return its JSON-able value.

        Raises:
            ScriptError: The expression threw or could not be evaluated.
        """

        async def _eval(page: Page) -> Any:
            if not isinstance(expression, str) or not expression.strip():
                raise BadInputError("exec.expression must be a non-empty string")
            try:
                return await page.evaluate(expression)
            except PlaywrightError as exc:
                reason = str(exc).splitlines()[0] if str(exc) else type(exc).__name__
                raise ScriptError(f"Script execution failed: {reason}") from exc

        return await self._run_action("exec", {"expression": expression}, _eval)

    async def set_content(self, html: str, *, timeout_ms: int | None = None) -> None:
        """Replace the document with *html* without navigating."""
        timeout = timeout_ms if timeout_ms is not None else self._settings.browser.content_timeout_ms

        async def _set_content(page: Page) -> None:
            if not isinstance(html, str):
                raise BadInputError("set_content.html must be a string")
            await page.set_content(html, wait_until="domcontentloaded", timeout=timeout)

        payload = {"len": len(html) if isinstance(html, str) else 0}
        await self._run_action("set_content", payload, _set_content)

    async def screenshot(
        self,
        *,
        full_page: bool = False,
        format: str = "jpeg",
        quality: int | None = None,
    ) -> Screenshot:
        """Capture the page as raw bytes plus mime type and data URL.

        JPEG (lossy) is the default at quality 70; PNG is lossless and no
        quality is sent to the encoder.
        """
        fmt = "jpeg" if format.lower() in ("jpeg", "jpg") else format.lower()
        payload: dict[str, Any] = {"full_page": full_page, "format": fmt, "quality": quality}

        async def _capture(page: Page) -> Screenshot:
            if fmt not in _MIME_TYPES:
                raise BadInputError(f"screenshot format must be jpeg or png, got {format!r}")
            options: dict[str, Any] = {"type": fmt, "full_page": full_page}
            if fmt == "jpeg":
                q = DEFAULT_SCREENSHOT_QUALITY if quality is None else quality
                if not 0 <= q <= 100:
                    raise BadInputError(f"screenshot quality must be within [0, 100], got {q}")
                options["quality"] = q
            data = await page.screenshot(**options)
            payload["bytes"] = len(data)
            mime = _MIME_TYPES[fmt]
            return Screenshot(data=data, mime=mime, data_url=to_data_url(data, mime))

        return await self._run_action("screenshot", payload, _capture)

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    async def canvas_frame(self) -> str | None:
        """Most recent WebGL/WebGPU canvas frame as a data URL, or ``None``."""
        return await last_canvas_frame(self._require_page())

    async def canvas_info(self) -> CanvasInfo:
        """Whether a GPU canvas exists and which context types were created."""
        return await detect_canvas(self._require_page())

    async def dom_snapshot(self, max_depth: int = 4, plaintext: bool = False) -> dict[str, Any] | None:
        """Depth-bounded element tree (depth clamped to ``[1, 10]``)."""
        page = self._require_page()
        try:
            return await serialize_dom(page, max_depth=max_depth, plaintext=plaintext)
        except PlaywrightError as exc:
            raise ScriptError("DOM serialization failed") from exc

    async def dom_signature(self) -> DomSignature:
        """Hash and size of a depth-4 plaintext snapshot, for cheap change checks."""
        tree = await self.dom_snapshot(max_depth=4, plaintext=True)
        return dom_signature(tree)

    async def accessibility_snapshot(self) -> Any | None:
        """The engine's accessibility tree, or ``None`` if unsupported or failed."""
        if self._page is None:
            logger.debug("Accessibility snapshot requested on a closed session")
            return None
        return await accessibility_snapshot(self._page)

    async def state(self) -> SessionState:
        """Current URL, title, viewport and buffer counts."""
        page = self._require_page()
        try:
            title = await page.title()
        except PlaywrightError:
            title = ""
        size = page.viewport_size
        viewport = (
            Viewport(width=size["width"], height=size["height"])
            if size
            else Viewport(
                width=self._settings.browser.viewport_width,
                height=self._settings.browser.viewport_height,
            )
        )
        return SessionState(
            url=page.url,
            title=title,
            viewport=viewport,
            console_count=len(self._console),
            network_count=len(self._network),
        )

    async def visual_stability(
        self,
        *,
        duration_ms: int | None = None,
        fps: float | None = None,
        threshold: float | None = None,
    ) -> StabilityReport:
        """Sample screenshots for a while and report whether the page has settled."""
        from agent_eyes.browser.stability import stability_window

        defaults = self._settings.stability
        return await stability_window(
            self,
            duration_ms=defaults.duration_ms if duration_ms is None else duration_ms,
            fps=defaults.fps if fps is None else fps,
            threshold=defaults.threshold if threshold is None else threshold,
        )

    def console_entries(self, n: int = 100) -> list[ConsoleRecord]:
        """Newest *n* console records, oldest first."""
        return self._console.last(n)

    def network_entries(self, n: int = 200) -> list[NetworkRecord]:
        """Newest *n* network records, oldest first."""
        return self._network.last(n)

    def metrics(self) -> dict:
        """Action count, average duration and error rate (plus breakdown)."""
        return self._metrics.summary()

    # ------------------------------------------------------------------
    # Instrumentation
    # ------------------------------------------------------------------

    def _require_page(self) -> Page:
        if self._page is None:
            raise SessionClosedError("Session is not open")
        return self._page

    async def _run_action(
        self,
        action: str,
        payload: dict[str, Any],
        operation: Callable[[Page], Awaitable[T]],
    ) -> T:
        started = time.monotonic()
        try:
            page = self._require_page()
            result = await operation(page)
        except Exception as exc:
            error = to_eyes_error(exc)
            await self._record(action, payload, started, error)
            if error is exc:
                raise
            raise error from exc
        await self._record(action, payload, started, None)
        return result

    async def _record(self, action: str, payload: dict[str, Any], started: float, error: EyesError | None) -> None:
        duration_ms = int((time.monotonic() - started) * 1000)
        self._metrics.record_action(action, duration_ms, success=error is None)

        if self._trace is not None:
            self._trace.write(TraceRecord.for_action(action, payload, duration_ms, error))

        if error is None:
            logger.debug("%s completed in %dms", action, duration_ms)
            await self.events.emit(EventType.ACTION_COMPLETED, {"action": action, "duration_ms": duration_ms})
        else:
            logger.info("%s failed after %dms: [%s] %s", action, duration_ms, error.code.value, error.message)
            await self.events.emit(
                EventType.ACTION_FAILED,
                {"action": action, "duration_ms": duration_ms, "error": error.to_dict()},
            )

    async def _settle(self, page: Page) -> None:
        """Short fixed pause after navigation / clicks to let the page react."""
        try:
            await page.wait_for_timeout(self._settings.browser.settle_ms)
        except PlaywrightError as e:
            logger.debug("Settle delay interrupted: %s", e)

    async def _wait_closed(self, seconds: float) -> bool:
        """Wait up to *seconds* for close; True if the session closed."""
        try:
            await asyncio.wait_for(self._closed.wait(), timeout=seconds)
        except TimeoutError:
            return False
        return True

    async def _shutdown_engine(self) -> None:
        try:
            await self._engine.shutdown()
        except Exception as e:
            logger.warning("Engine shutdown error (non-fatal): %s", e)

    # ------------------------------------------------------------------
    # Background recording
    # ------------------------------------------------------------------

    def _subscribe(self, page: Page) -> None:
        page.on("console", self._on_console)
        page.on("requestfinished", self._on_request_finished)
        page.on("requestfailed", self._on_request_failed)
        page.on("load", self._on_load)

    async def _on_console(self, message: ConsoleMessage) -> None:
        try:
            record = ConsoleRecord(level=message.type, text=message.text)
        except Exception as e:
            logger.debug("Dropped console event: %s", e)
            return
        self._console.append(record)
        await self.events.emit(EventType.CONSOLE, record.to_dict())

    async def _on_request_finished(self, request: Request) -> None:
        try:
            response = await request.response()
            record = NetworkRecord(url=request.url, method=request.method, status=response.status if response else 0)
        except Exception as e:
            logger.debug("Dropped network event: %s", e)
            return
        self._network.append(record)
        await self.events.emit(EventType.NETWORK, record.to_dict())

    async def _on_request_failed(self, request: Request) -> None:
        try:
            record = NetworkRecord(url=request.url, method=request.method, status=0, failure=request.failure)
        except Exception as e:
            logger.debug("Dropped network failure event: %s", e)
            return
        self._network.append(record)
        await self.events.emit(EventType.NETWORK, record.to_dict())

    async def _on_load(self, page: Page) -> None:
        try:
            title = await page.title()
            url = page.url
        except Exception as e:
            logger.debug("Load event without readable page: %s", e)
            return
        logger.debug("Navigated to %s (%s)", url, title)
        await self.events.emit(EventType.NAVIGATED, {"url": url, "title": title})

    async def _frame_loop(self) -> None:
        stream = self._settings.frame_stream
        period = frame_period_ms(stream.fps) / 1000
        while not self._closed.is_set():
            page = self._page
            if page is None:
                break
            try:
                frame = await page.screenshot(
                    type="jpeg",
                    quality=stream.quality,
                    full_page=False,
                    animations="disabled",
                    caret="hide",
                    scale="css",
                )
            except Exception as e:
                logger.debug("Preview frame skipped: %s", e)
            else:
                self.latest_frame = frame
                await self.events.emit_frame(frame)
            if await self._wait_closed(period):
                break
