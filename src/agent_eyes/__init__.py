"""Agent Eyes — resilient browser action orchestration with visual stability signals."""

from __future__ import annotations

try:
    from importlib.metadata import version

    __version__ = version("agent-eyes")
except Exception:
    __version__ = "0.0.0"
