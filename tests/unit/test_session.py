"""Unit tests for agent_eyes.browser.session — ActionSession over a fake engine."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeout

from agent_eyes.browser.session import ActionSession, frame_period_ms
from agent_eyes.exceptions import (
    BadInputError,
    ElementNotFoundError,
    ErrorCode,
    InternalError,
    NavigationTimeoutError,
    ScriptError,
    SecurityBlockedError,
    SessionClosedError,
)
from agent_eyes.monitoring.event_bus import EventType, InMemorySink
from agent_eyes.settings.config import Settings


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    """open / close semantics."""

    @pytest.mark.anyio
    async def test_action_before_open_fails_fast(self, session, page) -> None:
        with pytest.raises(SessionClosedError) as exc_info:
            await session.navigate("https://example.com")
        assert exc_info.value.code == ErrorCode.INTERNAL
        page.goto.assert_not_called()

    @pytest.mark.anyio
    async def test_close_before_open_is_noop(self, session, engine) -> None:
        await session.close()
        assert engine.shutdown_count == 0

    @pytest.mark.anyio
    async def test_open_and_close_are_idempotent(self, session, engine) -> None:
        await session.open()
        await session.open()
        assert engine.launch_count == 1
        assert session.is_open

        await session.close()
        await session.close()
        assert engine.shutdown_count == 1
        assert not session.is_open

    @pytest.mark.anyio
    async def test_actions_after_close_fail(self, session) -> None:
        await session.open()
        await session.close()
        with pytest.raises(SessionClosedError):
            await session.click("#go")
        with pytest.raises(SessionClosedError):
            await session.state()

    @pytest.mark.anyio
    async def test_context_manager(self, settings, engine) -> None:
        async with ActionSession(settings, engine=engine) as s:
            assert s.is_open
        assert engine.shutdown_count == 1

    @pytest.mark.anyio
    async def test_open_injects_canvas_hook_and_listeners(self, session, page) -> None:
        await session.open()
        page.add_init_script.assert_awaited_once()
        assert set(page.handlers) == {"console", "requestfinished", "requestfailed", "load"}
        await session.close()

    @pytest.mark.anyio
    async def test_failed_launch_is_internal_error(self, settings) -> None:
        engine = MagicMock()
        engine.launch = AsyncMock(side_effect=RuntimeError("no browser"))
        engine.shutdown = AsyncMock()
        s = ActionSession(settings, engine=engine)
        with pytest.raises(InternalError):
            await s.open()
        engine.shutdown.assert_awaited_once()
        assert not s.is_open

    @pytest.mark.anyio
    async def test_lifecycle_events(self, session) -> None:
        sink = InMemorySink()
        session.events.add_sink(sink)
        await session.open()
        await session.close()
        assert len(sink.of_type(EventType.SESSION_OPENED)) == 1
        assert len(sink.of_type(EventType.SESSION_CLOSED)) == 1


# ---------------------------------------------------------------------------
# navigate
# ---------------------------------------------------------------------------


class TestNavigate:
    @pytest.mark.anyio
    async def test_navigates_to_canonical_url(self, session, page) -> None:
        await session.open()
        await session.navigate("https://Example.com", wait_until="domcontentloaded")
        page.goto.assert_awaited_once_with("https://example.com/", wait_until="domcontentloaded", timeout=30_000)

    @pytest.mark.anyio
    async def test_private_url_blocked_before_engine(self, session, page) -> None:
        await session.open()
        with pytest.raises(SecurityBlockedError):
            await session.navigate("http://localhost:3000")
        page.goto.assert_not_called()

    @pytest.mark.anyio
    async def test_timeout_is_navigation_timeout(self, session, page) -> None:
        await session.open()
        page.goto.side_effect = PlaywrightTimeout("Timeout 30000ms exceeded")
        with pytest.raises(NavigationTimeoutError) as exc_info:
            await session.navigate("https://example.com")
        assert exc_info.value.hint == "timed out"

    @pytest.mark.anyio
    async def test_unknown_wait_condition(self, session) -> None:
        await session.open()
        with pytest.raises(BadInputError):
            await session.navigate("https://example.com", wait_until="whenever")  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# click / type / wait / scroll / keys / exec
# ---------------------------------------------------------------------------


class TestClick:
    @pytest.mark.anyio
    async def test_click_by_selector(self, session, page) -> None:
        await session.open()
        await session.click("#submit")
        page.locator.assert_called_with("#submit")
        locator = page.locator.return_value
        locator.wait_for.assert_awaited_once_with(state="visible", timeout=10_000)
        locator.scroll_into_view_if_needed.assert_awaited_once()
        locator.click.assert_awaited_once_with(timeout=10_000)

    @pytest.mark.anyio
    async def test_click_by_text_with_nth(self, session, page) -> None:
        await session.open()
        await session.click(text="Sign in", nth=1)
        page.get_by_text.assert_called_once_with("Sign in", exact=False)
        page.get_by_text.return_value.nth.assert_called_once_with(1)

    @pytest.mark.anyio
    @pytest.mark.parametrize("kwargs", [{}, {"selector": "#a", "text": "A"}])
    async def test_requires_exactly_one_target(self, session, page, kwargs) -> None:
        await session.open()
        with pytest.raises(BadInputError):
            await session.click(**kwargs)
        page.locator.assert_not_called()

    @pytest.mark.anyio
    async def test_missing_element_gets_suggestions(self, session, page) -> None:
        await session.open()
        page.locator.return_value.wait_for.side_effect = PlaywrightTimeout("Timeout 10000ms exceeded")
        page.evaluate.return_value = ["button#submit", "div.header", "input#email"]

        with pytest.raises(ElementNotFoundError) as exc_info:
            await session.click("#sumbit")

        assert exc_info.value.hint.startswith("Did you mean: ")
        assert "button#submit" in exc_info.value.hint
        assert exc_info.value.code == ErrorCode.ELEMENT_NOT_FOUND

    @pytest.mark.anyio
    async def test_missing_text_has_no_hint(self, session, page) -> None:
        await session.open()
        page.get_by_text.return_value.wait_for.side_effect = PlaywrightTimeout("Timeout")
        with pytest.raises(ElementNotFoundError) as exc_info:
            await session.click(text="Nope")
        assert exc_info.value.hint == ""


class TestTypeText:
    @pytest.mark.anyio
    async def test_focuses_then_types(self, session, page) -> None:
        await session.open()
        await session.type_text("#email", "a@b.c")
        page.locator.return_value.click.assert_awaited_once()
        page.keyboard.type.assert_awaited_once_with("a@b.c", delay=20)

    @pytest.mark.anyio
    @pytest.mark.parametrize(("requested", "effective"), [(5000, 200), (-5, 0), (50, 50)])
    async def test_delay_is_clamped(self, session, page, requested, effective) -> None:
        await session.open()
        await session.type_text("#q", "x", delay_ms=requested)
        page.keyboard.type.assert_awaited_once_with("x", delay=effective)

    @pytest.mark.anyio
    async def test_requires_selector(self, session) -> None:
        await session.open()
        with pytest.raises(BadInputError):
            await session.type_text("", "x")


class TestWait:
    @pytest.mark.anyio
    async def test_selector_mode(self, session, page) -> None:
        await session.open()
        await session.wait("selector", selector="h1", timeout_ms=5000)
        page.wait_for_selector.assert_awaited_once_with("h1", state="visible", timeout=5000)

    @pytest.mark.anyio
    async def test_selector_timeout_is_element_not_found(self, session, page) -> None:
        await session.open()
        page.wait_for_selector.side_effect = PlaywrightTimeout("Timeout")
        with pytest.raises(ElementNotFoundError):
            await session.wait("selector", selector="h1")

    @pytest.mark.anyio
    async def test_network_idle_and_timeout_modes(self, session, page) -> None:
        await session.open()
        await session.wait("networkidle", timeout_ms=1000)
        page.wait_for_load_state.assert_awaited_once_with("networkidle", timeout=1000)
        await session.wait("timeout", timeout_ms=250)
        page.wait_for_timeout.assert_any_await(250)

    @pytest.mark.anyio
    async def test_unknown_mode(self, session) -> None:
        await session.open()
        with pytest.raises(BadInputError):
            await session.wait("forever")


class TestOtherActions:
    @pytest.mark.anyio
    async def test_scroll_window(self, session, page) -> None:
        await session.open()
        await session.scroll(y=800)
        page.evaluate.assert_awaited_with("([x, y]) => window.scrollTo(x, y)", [0, 800])

    @pytest.mark.anyio
    async def test_scroll_into_view(self, session, page) -> None:
        await session.open()
        await session.scroll(into_view_selector="#footer")
        page.locator.assert_called_with("#footer")
        page.locator.return_value.scroll_into_view_if_needed.assert_awaited_once()

    @pytest.mark.anyio
    async def test_key_press(self, session, page) -> None:
        await session.open()
        await session.key_press("Enter")
        page.keyboard.press.assert_awaited_once_with("Enter")

    @pytest.mark.anyio
    async def test_eval_returns_value(self, session, page) -> None:
        await session.open()
        page.evaluate.return_value = 42
        assert await session.eval_script("6 * 7") == 42

    @pytest.mark.anyio
    async def test_eval_failure_is_script_error(self, session, page) -> None:
        await session.open()
        page.evaluate.side_effect = PlaywrightError("ReferenceError: foo is not defined")
        with pytest.raises(ScriptError) as exc_info:
            await session.eval_script("foo()")
        assert "ReferenceError" in exc_info.value.message

    @pytest.mark.anyio
    async def test_set_content(self, session, page) -> None:
        await session.open()
        await session.set_content("<h1>hi</h1>")
        page.set_content.assert_awaited_once_with("<h1>hi</h1>", wait_until="domcontentloaded", timeout=15_000)

    @pytest.mark.anyio
    async def test_unexpected_engine_error_is_internal(self, session, page) -> None:
        await session.open()
        page.keyboard.press.side_effect = RuntimeError("target crashed")
        with pytest.raises(InternalError) as exc_info:
            await session.key_press("Enter")
        assert isinstance(exc_info.value.__cause__, RuntimeError)


# ---------------------------------------------------------------------------
# screenshot
# ---------------------------------------------------------------------------


class TestScreenshot:
    @pytest.mark.anyio
    async def test_default_is_jpeg_quality_70(self, session, page) -> None:
        await session.open()
        shot = await session.screenshot()
        page.screenshot.assert_awaited_once_with(type="jpeg", full_page=False, quality=70)
        assert shot.mime == "image/jpeg"
        assert shot.data_url.startswith("data:image/jpeg;base64,")
        assert shot.size == len(page.screenshot.return_value)

    @pytest.mark.anyio
    async def test_png_sends_no_quality(self, session, page) -> None:
        await session.open()
        shot = await session.screenshot(format="png", quality=10, full_page=True)
        page.screenshot.assert_awaited_once_with(type="png", full_page=True)
        assert shot.mime == "image/png"

    @pytest.mark.anyio
    async def test_bad_format(self, session) -> None:
        await session.open()
        with pytest.raises(BadInputError):
            await session.screenshot(format="gif")


# ---------------------------------------------------------------------------
# Observation
# ---------------------------------------------------------------------------


class TestObservation:
    @pytest.mark.anyio
    async def test_state(self, session) -> None:
        await session.open()
        state = await session.state()
        assert state.url == "https://example.com/"
        assert state.title == "Example Domain"
        assert state.viewport.width == 1280
        assert state.console_count == 0

    @pytest.mark.anyio
    async def test_console_and_network_listeners_feed_buffers(self, session, page) -> None:
        await session.open()
        msg = MagicMock()
        msg.type = "error"
        msg.text = "Uncaught TypeError"
        await page.handlers["console"][0](msg)

        request = MagicMock()
        request.url = "https://example.com/app.js"
        request.method = "GET"
        request.response = AsyncMock(return_value=MagicMock(status=200))
        await page.handlers["requestfinished"][0](request)

        failed = MagicMock()
        failed.url = "https://example.com/missing.css"
        failed.method = "GET"
        failed.failure = "net::ERR_FAILED"
        await page.handlers["requestfailed"][0](failed)

        console = session.console_entries()
        assert [(c.level, c.text) for c in console] == [("error", "Uncaught TypeError")]
        network = session.network_entries()
        assert [(n.status, n.failure) for n in network] == [(200, None), (0, "net::ERR_FAILED")]
        state = await session.state()
        assert state.console_count == 1
        assert state.network_count == 2

    @pytest.mark.anyio
    async def test_listener_errors_are_swallowed(self, session, page) -> None:
        await session.open()
        request = MagicMock()
        request.response = AsyncMock(side_effect=PlaywrightError("gone"))
        await page.handlers["requestfinished"][0](request)
        assert session.network_entries() == []

    @pytest.mark.anyio
    async def test_load_emits_navigated(self, session, page) -> None:
        sink = InMemorySink()
        session.events.add_sink(sink)
        await session.open()
        await page.handlers["load"][0](page)
        navigated = sink.of_type(EventType.NAVIGATED)
        assert navigated[0].data == {"url": "https://example.com/", "title": "Example Domain"}

    @pytest.mark.anyio
    async def test_dom_signature_tracks_content(self, session, page) -> None:
        await session.open()
        page.evaluate.return_value = {"tag": "html", "attrs": {}, "children": [], "text": "one"}
        first = await session.dom_signature()
        page.evaluate.return_value = {"tag": "html", "attrs": {}, "children": [], "text": "two"}
        second = await session.dom_signature()
        assert first.hash != second.hash
        assert first.size == len(json.dumps(page.evaluate.return_value, sort_keys=True, separators=(",", ":")))

    @pytest.mark.anyio
    async def test_dom_snapshot_clamps_depth(self, session, page) -> None:
        await session.open()
        await session.dom_snapshot(max_depth=99, plaintext=True)
        args = page.evaluate.await_args.args
        assert args[1]["maxDepth"] == 10
        assert args[1]["plaintext"] is True

    @pytest.mark.anyio
    async def test_dom_snapshot_failure_is_script_error(self, session, page) -> None:
        await session.open()
        page.evaluate.side_effect = PlaywrightError("Execution context was destroyed")
        with pytest.raises(ScriptError):
            await session.dom_snapshot()

    @pytest.mark.anyio
    async def test_accessibility_snapshot(self, session, page) -> None:
        await session.open()
        assert await session.accessibility_snapshot() == {"role": "WebArea", "name": "Example Domain"}
        page.accessibility.snapshot.side_effect = PlaywrightError("unsupported")
        assert await session.accessibility_snapshot() is None

    @pytest.mark.anyio
    async def test_canvas_info_defaults_when_unavailable(self, session, page) -> None:
        await session.open()
        page.evaluate.side_effect = PlaywrightError("no page")
        info = await session.canvas_info()
        assert info.has_canvas is False
        assert await session.canvas_frame() is None


# ---------------------------------------------------------------------------
# Metrics / events / trace
# ---------------------------------------------------------------------------


class TestInstrumentation:
    @pytest.mark.anyio
    async def test_metrics_count_successes_and_failures(self, session, page) -> None:
        await session.open()
        await session.key_press("a")
        await session.key_press("b")
        page.wait_for_selector.side_effect = PlaywrightTimeout("Timeout")
        with pytest.raises(ElementNotFoundError):
            await session.wait("selector", selector="#x")

        metrics = session.metrics()
        assert metrics["actions"] == 3
        assert metrics["errors"] == 1
        assert metrics["error_rate"] == pytest.approx(1 / 3)
        assert metrics["by_action"]["keys"]["calls"] == 2

    @pytest.mark.anyio
    async def test_not_open_failure_is_counted(self, session) -> None:
        with pytest.raises(SessionClosedError):
            await session.key_press("a")
        assert session.metrics()["actions"] == 1
        assert session.metrics()["errors"] == 1

    @pytest.mark.anyio
    async def test_action_events(self, session, page) -> None:
        sink = InMemorySink()
        session.events.add_sink(sink)
        await session.open()
        await session.key_press("Enter")
        page.keyboard.press.side_effect = PlaywrightError("Unknown key")
        with pytest.raises(InternalError):
            await session.key_press("Nope")

        completed = sink.of_type(EventType.ACTION_COMPLETED)
        failed = sink.of_type(EventType.ACTION_FAILED)
        assert completed[0].data["action"] == "keys"
        assert failed[0].data["error"]["code"] == "INTERNAL"

    @pytest.mark.anyio
    async def test_trace_file_records_each_action(self, engine, tmp_path) -> None:
        trace_file = tmp_path / "trace.jsonl"
        settings = Settings(
            frame_stream={"enabled": False},
            trace={"enabled": True, "file": str(trace_file)},
            browser={"settle_ms": 0},
        )
        async with ActionSession(settings, engine=engine) as s:
            await s.set_content("<p>" + "x" * 500 + "</p>")
            with pytest.raises(SecurityBlockedError):
                await s.navigate("file:///etc/passwd")

        lines = [json.loads(line) for line in trace_file.read_text().splitlines()]
        assert [line["action"] for line in lines] == ["set_content", "navigate"]
        assert lines[0]["payload"] == {"len": 507}
        assert lines[0]["success"] is True
        assert lines[1]["error"]["code"] == "SECURITY_BLOCKED"


# ---------------------------------------------------------------------------
# pause / background frames
# ---------------------------------------------------------------------------


class TestPauseAndFrames:
    @pytest.mark.anyio
    async def test_pause_returns_after_delay(self, session) -> None:
        await session.open()
        await session.pause(10)
        await session.close()

    @pytest.mark.anyio
    async def test_close_interrupts_pause(self, session) -> None:
        await session.open()
        task = asyncio.create_task(session.pause(60_000))
        await asyncio.sleep(0.01)
        await session.close()
        with pytest.raises(SessionClosedError):
            await asyncio.wait_for(task, timeout=1)

    @pytest.mark.anyio
    async def test_frame_stream_emits_and_stops_on_close(self, engine, page) -> None:
        settings = Settings(frame_stream={"enabled": True, "fps": 8}, browser={"settle_ms": 0})
        sink = InMemorySink()
        s = ActionSession(settings, engine=engine)
        s.events.add_sink(sink)
        await s.open()
        await asyncio.sleep(0.05)
        await s.close()

        frames = sink.of_type(EventType.FRAME)
        assert frames
        assert s.latest_frame == page.screenshot.return_value
        kwargs = page.screenshot.await_args.kwargs
        assert kwargs["type"] == "jpeg"
        assert kwargs["quality"] == 60

    @pytest.mark.anyio
    async def test_frame_capture_errors_are_swallowed(self, engine, page) -> None:
        settings = Settings(frame_stream={"enabled": True}, browser={"settle_ms": 0})
        page.screenshot.side_effect = PlaywrightError("Target closed")
        async with ActionSession(settings, engine=engine) as s:
            await asyncio.sleep(0.01)
            assert s.latest_frame is None

    @pytest.mark.parametrize(("fps", "period"), [(3, 333), (8, 200), (100, 200), (0.1, 2000), (5, 200)])
    def test_frame_period(self, fps, period) -> None:
        assert frame_period_ms(fps) == period
