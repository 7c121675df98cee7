"""Page navigation with typed failure classification.

Wraps Playwright's ``page.goto`` so that any failure to reach the requested
wait condition surfaces as ``NavigationTimeoutError``.  Network-level
failures that no amount of waiting would fix (DNS, refused connection, bad
certificate) get a short hint naming the cause.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal

from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeout

from agent_eyes.exceptions import NavigationTimeoutError

if TYPE_CHECKING:
    from playwright.async_api import Page, Response

logger = logging.getLogger(__name__)

# Playwright error substrings that indicate the target itself is unreachable.
_UNREACHABLE_ERRORS: tuple[str, ...] = (
    "ERR_NAME_NOT_RESOLVED",
    "ERR_CONNECTION_REFUSED",
    "ERR_CONNECTION_RESET",
    "ERR_CONNECTION_CLOSED",
    "ERR_SSL_PROTOCOL_ERROR",
    "ERR_CERT_AUTHORITY_INVALID",
    "ERR_CERT_COMMON_NAME_INVALID",
    "ERR_ADDRESS_UNREACHABLE",
)

WaitUntil = Literal["commit", "domcontentloaded", "load", "networkidle"]

WAIT_CONDITIONS: tuple[WaitUntil, ...] = ("commit", "domcontentloaded", "load", "networkidle")


async def goto(
    page: Page,
    url: str,
    *,
    wait_until: WaitUntil = "load",
    timeout_ms: int = 30_000,
) -> Response | None:
    """Navigate *page* to an already-authorized *url*.

    Args:
        page: Playwright page instance.
        url: Target URL (must have passed the navigation guard).
        wait_until: Load state that counts as "arrived".
        timeout_ms: Navigation timeout in milliseconds.

    Returns:
        The main-frame ``Response``, or ``None`` for same-document navigations.

    Raises:
        NavigationTimeoutError: On any navigation failure, wrapping the cause.
    """
    try:
        logger.debug("goto %s (wait_until=%s, timeout=%dms)", url, wait_until, timeout_ms)
        return await page.goto(url, wait_until=wait_until, timeout=timeout_ms)
    except PlaywrightError as exc:
        hint = describe_navigation_failure(exc)
        if isinstance(exc, PlaywrightTimeout):
            logger.warning("Navigation to %s timed out waiting for %s", url, wait_until)
        else:
            logger.warning("Navigation to %s failed: %s", url, hint or exc)
        raise NavigationTimeoutError(f"Navigation failed: {url}", hint=hint, data={"url": url}) from exc


def describe_navigation_failure(exc: Exception) -> str:
    """Return a short human-readable reason for an unreachable target, or ``""``."""
    error_msg = str(exc)
    for pattern in _UNREACHABLE_ERRORS:
        if pattern in error_msg:
            return pattern.replace("ERR_", "").replace("_", " ").lower()
    if isinstance(exc, PlaywrightTimeout):
        return "timed out"
    return ""
