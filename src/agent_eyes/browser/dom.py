"""DOM serialization, accessibility snapshot, and selector suggestions.

The in-page JavaScript only walks the live document and reports raw data;
depth/size clamping and the edit-distance ranking for selector suggestions
happen here in Python so they can be tested without a browser.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from playwright.async_api import Page

logger = logging.getLogger(__name__)

MIN_DEPTH = 1
MAX_DEPTH = 10
MAX_TEXT_CHARS = 2000
MAX_CHILDREN = 1000
MAX_SUGGESTION_CANDIDATES = 2000
SUGGESTION_COUNT = 5

_SERIALIZE_DOM_JS = """
({ maxDepth, plaintext, maxText, maxChildren }) => {
    function attrs(node) {
        const o = {};
        if (node.attributes) {
            for (const a of Array.from(node.attributes)) {
                if (a.name && a.value != null) o[a.name] = a.value;
            }
        }
        return o;
    }
    function nodeInfo(n, depth) {
        if (!n || depth > maxDepth) return null;
        const info = { tag: n.nodeType === 1 ? n.tagName.toLowerCase() : n.nodeName, attrs: {}, children: [] };
        if (n.nodeType === 1) info.attrs = attrs(n);
        if (plaintext && n.nodeType === 1) {
            info.text = (n.innerText || '').slice(0, maxText);
        } else if (!plaintext && n.nodeType === 3) {
            info.text = (n.nodeValue || '').slice(0, maxText);
        }
        if (n.childNodes && depth < maxDepth) {
            for (const c of Array.from(n.childNodes)) {
                if (plaintext && c.nodeType !== 1) continue;
                if (info.children.length >= maxChildren) break;
                const ci = nodeInfo(c, depth + 1);
                if (ci) info.children.push(ci);
            }
        }
        return info;
    }
    return nodeInfo(document.documentElement, 1);
}
"""

_COLLECT_SIGNATURES_JS = """
(limit) => {
    const seen = new Set();
    for (const el of document.querySelectorAll('*')) {
        const cls = typeof el.className === 'string' && el.className.trim()
            ? '.' + el.className.trim().split(/\\s+/).slice(0, 2).join('.')
            : '';
        seen.add(el.tagName.toLowerCase() + (el.id ? '#' + el.id : '') + cls);
        if (seen.size >= limit) break;
    }
    return Array.from(seen);
}
"""


def clamp_depth(max_depth: int | None) -> int:
    """Clamp a requested snapshot depth to ``[1, 10]`` (default 4)."""
    if max_depth is None:
        return 4
    return min(max(int(max_depth), MIN_DEPTH), MAX_DEPTH)


async def serialize_dom(page: Page, *, max_depth: int | None = 4, plaintext: bool = False) -> dict[str, Any] | None:
    """Return a depth-bounded tree mirroring the document's element structure.

    Each node is ``{tag, attrs, children[, text]}``.  In plaintext mode every
    element carries its rendered ``innerText`` (capped at 2000 characters) and
    text nodes are skipped; otherwise text nodes carry their own value.
    Children per node are capped at 1000.
    """
    return await page.evaluate(
        _SERIALIZE_DOM_JS,
        {
            "maxDepth": clamp_depth(max_depth),
            "plaintext": bool(plaintext),
            "maxText": MAX_TEXT_CHARS,
            "maxChildren": MAX_CHILDREN,
        },
    )


async def accessibility_snapshot(page: Page) -> Any | None:
    """Return the engine's accessibility tree, or ``None`` if unavailable."""
    try:
        accessibility = getattr(page, "accessibility", None)
        if accessibility is not None:
            return await accessibility.snapshot(interesting_only=False)
        # Newer Playwright releases expose only the ARIA snapshot (YAML text).
        return await page.locator(":root").aria_snapshot()
    except Exception as e:
        logger.debug("Accessibility snapshot unavailable: %s", e)
        return None


# ---------------------------------------------------------------------------
# Selector suggestions
# ---------------------------------------------------------------------------


def levenshtein(a: str, b: str) -> int:
    """Classic edit distance (insert / delete / substitute, all cost 1)."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (ca != cb),
                )
            )
        previous = current
    return previous[-1]


def rank_selectors(selector: str, candidates: list[str], limit: int = SUGGESTION_COUNT) -> list[str]:
    """Return the *limit* candidates closest to *selector* by edit distance.

    Ties keep document order; duplicates are dropped.
    """
    unique = list(dict.fromkeys(c for c in candidates if c))
    return sorted(unique, key=lambda c: levenshtein(selector, c))[:limit]


async def suggest_selectors(page: Page, selector: str) -> list[str]:
    """Best-effort "did you mean" pass over the live page.

    Collects up to ``MAX_SUGGESTION_CANDIDATES`` ``tag#id.class`` signatures
    and ranks them against *selector*.  Returns ``[]`` on any failure.
    """
    try:
        candidates = await page.evaluate(_COLLECT_SIGNATURES_JS, MAX_SUGGESTION_CANDIDATES)
    except Exception as e:
        logger.debug("Selector suggestion pass failed: %s", e)
        return []
    if not isinstance(candidates, list):
        return []
    return rank_selectors(selector, [str(c) for c in candidates])
