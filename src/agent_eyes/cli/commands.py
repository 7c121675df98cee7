"""CLI commands for running plans, checking URLs and measuring visual stability."""

from __future__ import annotations

import asyncio
import json
import re
import sys
from pathlib import Path
from typing import NoReturn, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from agent_eyes.exceptions import BadInputError, EyesError
from agent_eyes.settings.config import Settings

console = Console()


def _load_settings(*, headed: bool = False, trace: Optional[Path] = None) -> Settings:
    """Resolve settings, apply CLI flag overrides and configure logging."""
    from agent_eyes.log_config import configure_logging
    from agent_eyes.settings import get_settings

    settings = get_settings()
    updates: dict = {}
    if headed:
        updates["browser"] = settings.browser.model_copy(update={"headless": False})
    if trace is not None:
        updates["trace"] = settings.trace.model_copy(update={"enabled": True, "file": str(trace)})
    if updates:
        settings = settings.model_copy(update=updates)

    configure_logging(settings.log_level, settings.log_json)
    return settings


def _fail(err: EyesError) -> NoReturn:
    console.print(f"[red]✗[/red] {err.code.value}: {err.message}")
    if err.hint:
        console.print(f"  [dim]hint:[/dim] {err.hint}")
    raise typer.Exit(code=1)


def run_plan(
    plan_file: Path = typer.Argument(..., help="JSON plan file: {goal, steps[], abort_on_error, max_duration_ms}."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the JSON run report to this file."),
    headed: bool = typer.Option(False, "--headed", help="Show the browser window."),
    trace: Optional[Path] = typer.Option(None, "--trace", help="Append a JSONL action trace to this file."),
    events: bool = typer.Option(False, "--events", help="Emit JSONL events to stderr."),
) -> None:
    """Execute a plan of browser actions and report the outcome."""
    from agent_eyes.runner import StepRunner

    if not plan_file.exists():
        console.print(f"[red]File not found:[/red] {plan_file}")
        raise typer.Exit(code=1)
    try:
        plan_data = json.loads(plan_file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid JSON in {plan_file}:[/red] {e}")
        raise typer.Exit(code=1)

    try:
        plan = StepRunner.validate(plan_data)
    except BadInputError as e:
        _fail(e)

    settings = _load_settings(headed=headed, trace=trace)
    console.print(Panel(f"[bold]Goal:[/bold] {plan.goal or '(none)'}  ·  {len(plan.steps)} steps", title="agent-eyes"))

    try:
        report, snapshot = asyncio.run(_execute_plan(settings, plan, events))
    except EyesError as e:
        _fail(e)

    table = Table(title=f"Run {report.trace_id}")
    table.add_column("#", style="dim")
    table.add_column("Action", style="cyan")
    table.add_column("Status")
    table.add_column("Attempts")
    table.add_column("ms", justify="right")
    table.add_column("Error")
    for outcome in report.steps:
        table.add_row(
            str(outcome.index),
            outcome.action,
            "[green]ok[/green]" if outcome.success else "[red]failed[/red]",
            str(outcome.attempts),
            str(outcome.duration_ms),
            f"{outcome.error.code}: {outcome.error.message}" if outcome.error else "",
        )
    console.print(table)
    preview_bytes = len(snapshot["frame_b64"]) * 3 // 4
    console.print(
        f"  Last page: {snapshot['url'] or '(none)'}  ·  session {snapshot['uptime_sec']}s  ·  preview {preview_bytes} bytes"
    )

    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(report.to_json(), encoding="utf-8")
        console.print(f"  Report saved to: {output}")

    if report.success:
        console.print(f"\n[green]✓[/green] Run complete in {report.duration_ms}ms")
    else:
        console.print(f"\n[red]✗[/red] Run failed: {report.error.code}: {report.error.message}")
        if report.error.hint:
            console.print(f"  [dim]hint:[/dim] {report.error.hint}")
        raise typer.Exit(code=1)


async def _execute_plan(settings: Settings, plan, events: bool):
    from agent_eyes.browser.session import ActionSession
    from agent_eyes.monitoring.event_bus import JsonlSink, LoggingSink
    from agent_eyes.runner import StepRunner

    session = ActionSession(settings)
    session.events.add_sink(LoggingSink())
    if events:
        session.events.add_sink(JsonlSink(sys.stderr))
    async with session:
        report = await StepRunner(session).run(plan)
    return report, session.events.get_snapshot()


def check_url(
    url: str = typer.Argument(..., help="URL to check against the navigation guard."),
    allow_private: bool = typer.Option(False, "--allow-private", help="Do not block private / loopback hosts."),
    allow_pattern: Optional[str] = typer.Option(None, "--allow-pattern", help="Only allow URLs matching this regex."),
) -> None:
    """Check whether a URL would be allowed by the navigation guard."""
    from agent_eyes.browser.guard import GuardPolicy, authorize

    try:
        pattern = re.compile(allow_pattern) if allow_pattern else None
    except re.error as e:
        console.print(f"[red]Invalid --allow-pattern:[/red] {e}")
        raise typer.Exit(code=1)

    policy = GuardPolicy(block_private_ips=not allow_private, allow_pattern=pattern)
    try:
        canonical = authorize(url, policy)
    except EyesError as e:
        _fail(e)
    console.print(f"[green]✓[/green] Allowed: {canonical}")


def stability(
    url: str = typer.Argument(..., help="Page to sample."),
    duration_ms: Optional[int] = typer.Option(None, "--duration-ms", help="Sampling window (300-15000 ms)."),
    fps: Optional[float] = typer.Option(None, "--fps", help="Capture rate (1-10)."),
    threshold: Optional[float] = typer.Option(None, "--threshold", help="Average diff ratio counted as stable (0-1)."),
    headed: bool = typer.Option(False, "--headed", help="Show the browser window."),
) -> None:
    """Open a page and report whether it is visually stable."""
    settings = _load_settings(headed=headed)
    try:
        report, signature = asyncio.run(_measure_stability(settings, url, duration_ms, fps, threshold))
    except EyesError as e:
        _fail(e)

    table = Table(title=f"Visual stability: {url}")
    table.add_column("Stable")
    table.add_column("Avg diff", justify="right")
    table.add_column("Max diff", justify="right")
    table.add_column("Samples", justify="right")
    table.add_column("DOM signature", style="dim")
    table.add_row(
        "[green]yes[/green]" if report.stable else "[yellow]no[/yellow]",
        f"{report.avg_diff:.4f}",
        f"{report.max_diff:.4f}",
        str(report.samples),
        f"{signature.hash[:12]} ({signature.size} chars)",
    )
    console.print(table)


async def _measure_stability(settings: Settings, url: str, duration_ms, fps, threshold):
    from agent_eyes.browser.session import ActionSession

    async with ActionSession(settings) as session:
        await session.navigate(url)
        report = await session.visual_stability(duration_ms=duration_ms, fps=fps, threshold=threshold)
        signature = await session.dom_signature()
    return report, signature
