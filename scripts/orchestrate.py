#!/usr/bin/env python3
"""Orchestration demo — run a small plan against a public page.

Opens a headless session, executes a four-step plan (navigate, wait for a
heading, scroll, short pause), then prints the run report, the session
metrics and a visual stability reading.

Usage:
    python scripts/orchestrate.py
    python scripts/orchestrate.py --url "https://example.org" --headed
    python scripts/orchestrate.py --report out/run.json

Prerequisites:
    - Playwright browsers installed:
        playwright install chromium
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from agent_eyes.browser.session import ActionSession
from agent_eyes.log_config import configure_logging
from agent_eyes.monitoring.event_bus import InMemorySink
from agent_eyes.runner import StepRunner
from agent_eyes.settings import get_settings

console = Console()


def build_plan(url: str) -> dict:
    return {
        "goal": "Open a site and interact",
        "steps": [
            {"action": "navigate", "args": {"url": url, "wait": "domcontentloaded"}},
            {"action": "wait", "args": {"for": "selector", "selector": "h1", "timeout_ms": 5000}},
            {"action": "scroll", "args": {"y": 800}},
            {"action": "wait", "args": {"for": "timeout", "timeout_ms": 500}},
        ],
        "abort_on_error": True,
        "max_duration_ms": 60000,
    }


async def main_async(url: str, headed: bool, report_path: Path | None) -> int:
    settings = get_settings()
    if headed:
        settings = settings.model_copy(update={"browser": settings.browser.model_copy(update={"headless": False})})

    sink = InMemorySink()
    async with ActionSession(settings) as session:
        session.events.add_sink(sink)
        report = await StepRunner(session).run(build_plan(url))
        stability = await session.visual_stability(duration_ms=1500)
        metrics = session.metrics()

    console.print(f"Run result: success={report.success}  trace={report.trace_id}")
    if report.last_state:
        console.print(f"Last state: {report.last_state.url} — {report.last_state.title!r}")
    if report.error:
        console.print(f"[red]{report.error.code}[/red] {report.error.message}")

    table = Table(title="Session")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Actions", str(metrics["actions"]))
    table.add_row("Avg duration (ms)", str(metrics["avg_duration_ms"]))
    table.add_row("Error rate", f"{metrics['error_rate']:.2%}")
    table.add_row("Stable", str(stability.stable))
    table.add_row("Avg diff", f"{stability.avg_diff:.4f}")
    table.add_row("Events", str(sink.count))
    console.print(table)

    if report_path:
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report_path.write_text(report.to_json(), encoding="utf-8")
        console.print(f"Report saved to {report_path}")
    return 0 if report.success else 1


def main() -> int:
    parser = argparse.ArgumentParser(description="Agent Eyes orchestration demo")
    parser.add_argument("--url", default="https://example.com", help="Page to open")
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    parser.add_argument("--report", type=Path, default=None, help="Write the JSON run report here")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()

    configure_logging(args.log_level)
    return asyncio.run(main_async(args.url, args.headed, args.report))


if __name__ == "__main__":
    sys.exit(main())
