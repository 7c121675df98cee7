"""Canvas hook — captures frames from WebGL / WebGPU canvases.

Screenshots of GPU canvases are often blank in headless Chromium, so the page
gets an init script that wraps ``HTMLCanvasElement.prototype.getContext``.
When a ``webgl``/``webgl2``/``webgpu`` context is created the hook remembers
that canvas and, once per second, stores ``canvas.toDataURL('image/webp', 0.8)``
on ``window.__EYES.canvasFrame``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from agent_eyes.models.observation import CanvasInfo

if TYPE_CHECKING:
    from playwright.async_api import Page

logger = logging.getLogger(__name__)

CAPTURE_INTERVAL_MS = 1000

_INSTALL_HOOK_JS = """
(() => {
    try {
        const w = window;
        if (!w.__EYES) w.__EYES = {};
        const targetTypes = new Set(['webgl', 'webgl2', 'gpupresent', 'webgpu']);
        const orig = HTMLCanvasElement.prototype.getContext;
        if (!orig || w.__EYES.__canvasHookInstalled) return;
        w.__EYES.__canvasHookInstalled = true;
        const ctxTypes = new Set();
        let lastCanvas = null;
        Object.defineProperty(w.__EYES, 'ctxTypes', { get: () => Array.from(ctxTypes) });
        Object.defineProperty(w.__EYES, 'lastCanvas', { get: () => lastCanvas });

        HTMLCanvasElement.prototype.getContext = function (type, attrs) {
            const ctx = orig.call(this, type, attrs);
            try {
                if (ctx && typeof type === 'string' && targetTypes.has(type)) {
                    ctxTypes.add(type);
                    lastCanvas = this;
                }
            } catch (e) {}
            return ctx;
        };

        setInterval(() => {
            try {
                if (lastCanvas && typeof lastCanvas.toDataURL === 'function') {
                    w.__EYES.canvasFrame = lastCanvas.toDataURL('image/webp', 0.8);
                }
            } catch (e) {}
        }, %d);
    } catch (e) {}
})()
""" % CAPTURE_INTERVAL_MS

_LAST_FRAME_JS = "() => (window.__EYES && window.__EYES.canvasFrame) || null"

_DETECT_JS = """
() => {
    const e = window.__EYES;
    return { has_canvas: !!(e && e.lastCanvas), ctx_types: (e && e.ctxTypes) ? e.ctxTypes : [] };
}
"""


async def inject_canvas_hook(page: Page) -> None:
    """Install the hook for every future document and the current one."""
    await page.add_init_script(script=_INSTALL_HOOK_JS)
    try:
        await page.evaluate(_INSTALL_HOOK_JS)
    except Exception as e:
        # about:blank or a closing page; the init script covers the next load
        logger.debug("Canvas hook not applied to current document: %s", e)


async def last_canvas_frame(page: Page) -> str | None:
    """Return the latest captured canvas frame as a data URL, or ``None``."""
    try:
        frame = await page.evaluate(_LAST_FRAME_JS)
    except Exception as e:
        logger.debug("Canvas frame read failed: %s", e)
        return None
    return frame if isinstance(frame, str) and frame else None


async def detect_canvas(page: Page) -> CanvasInfo:
    """Report whether a GPU canvas exists and which context types were created."""
    try:
        raw = await page.evaluate(_DETECT_JS)
        return CanvasInfo.model_validate(raw)
    except Exception as e:
        logger.debug("Canvas detection failed: %s", e)
        return CanvasInfo()
