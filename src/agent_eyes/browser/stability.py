"""Visual stability window — has the page stopped changing?

Captures JPEG screenshots through the session at a fixed rate for a bounded
period, then diffs every consecutive pair with :func:`pixel_diff_ratio`.
Sleeps go through ``ActionSession.pause`` so a session close ends the window
immediately.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from agent_eyes.browser.visual import pixel_diff_ratio
from agent_eyes.models.observation import StabilityReport

if TYPE_CHECKING:
    from agent_eyes.browser.session import ActionSession

logger = logging.getLogger(__name__)

MIN_DURATION_MS = 300
MAX_DURATION_MS = 15_000
MIN_FPS = 1.0
MAX_FPS = 10.0
SAMPLE_QUALITY = 60


def _clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


async def stability_window(
    session: ActionSession,
    *,
    duration_ms: int = 2000,
    fps: float = 3,
    threshold: float = 0.02,
    sample_stride: int = 3,
    resize_width: int = 256,
) -> StabilityReport:
    """Sample the page for *duration_ms* and report whether it is visually stable.

    Args:
        session: An open session.
        duration_ms: Sampling period, clamped to ``[300, 15000]``.
        fps: Capture rate, clamped to ``[1, 10]``.
        threshold: Average diff ratio at or below which the page counts as
            stable, clamped to ``[0, 1]``.
        sample_stride: Pixel grid stride passed to the comparator.
        resize_width: Comparison width passed to the comparator.

    Returns:
        ``StabilityReport`` with average / maximum pairwise diff (4 decimals)
        and the number of diffs computed.  Fewer than two frames yields a
        stable report with zero samples.

    Raises:
        SessionClosedError: If the session is closed before or during sampling.
    """
    duration = _clamp(duration_ms, MIN_DURATION_MS, MAX_DURATION_MS)
    rate = _clamp(fps, MIN_FPS, MAX_FPS)
    limit = _clamp(threshold, 0.0, 1.0)
    period_ms = int(1000 / rate)

    frames: list[bytes] = []
    started = time.monotonic()
    while (time.monotonic() - started) * 1000 < duration:
        shot = await session.screenshot(format="jpeg", quality=SAMPLE_QUALITY)
        frames.append(shot.data)
        await session.pause(period_ms)

    diffs = [
        pixel_diff_ratio(prev, cur, sample_stride=sample_stride, resize_width=resize_width)
        for prev, cur in zip(frames, frames[1:])
    ]
    avg = sum(diffs) / len(diffs) if diffs else 0.0
    peak = max(diffs) if diffs else 0.0

    logger.debug("Stability window: %d frames, avg=%.4f max=%.4f", len(frames), avg, peak)
    return StabilityReport(
        stable=avg <= limit,
        avg_diff=round(avg, 4),
        max_diff=round(peak, 4),
        samples=len(diffs),
    )
