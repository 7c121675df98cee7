"""Lightweight per-session action metrics.

Every primitive action records exactly one entry, success or failure.
Totals feed ``ActionSession.metrics()``; the per-action breakdown is there
for diagnostics.
"""

from __future__ import annotations


class MetricsCollector:
    """Accumulates action counts, durations and errors for one session."""

    def __init__(self) -> None:
        self.actions_executed: int = 0
        self.total_duration_ms: int = 0
        self.error_count: int = 0
        self._by_action: dict[str, dict[str, int]] = {}

    def record_action(self, action: str, duration_ms: int, success: bool) -> None:
        """Record one completed (or failed) action invocation."""
        self.actions_executed += 1
        self.total_duration_ms += duration_ms
        entry = self._by_action.setdefault(action, {"calls": 0, "errors": 0, "duration_ms": 0})
        entry["calls"] += 1
        entry["duration_ms"] += duration_ms
        if not success:
            self.error_count += 1
            entry["errors"] += 1

    def summary(self) -> dict:
        """Produce a summary dict suitable for JSON serialization."""
        n = self.actions_executed
        return {
            "actions": n,
            "avg_duration_ms": round(self.total_duration_ms / n) if n else 0,
            "error_rate": self.error_count / n if n else 0.0,
            "total_duration_ms": self.total_duration_ms,
            "errors": self.error_count,
            "by_action": {k: dict(v) for k, v in self._by_action.items()},
        }
