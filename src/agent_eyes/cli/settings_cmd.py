"""CLI commands for inspecting and validating Agent Eyes settings."""

from __future__ import annotations

import json

import typer
from rich.console import Console

settings_app = typer.Typer(help="Inspect and validate Agent Eyes configuration.")
console = Console()


@settings_app.command("show")
def show_settings() -> None:
    """Display the currently resolved settings."""
    from agent_eyes.settings import get_settings

    settings = get_settings()
    console.print_json(json.dumps(settings.model_dump(mode="json"), indent=2, default=str))


@settings_app.command("validate")
def validate_settings() -> None:
    """Validate settings (including the guard allow-pattern) and report any issues."""
    from agent_eyes.browser.guard import GuardPolicy
    from agent_eyes.settings import get_settings

    try:
        settings = get_settings()
        GuardPolicy.from_settings(settings.guard)
    except Exception as e:
        console.print(f"[red]✗[/red] Settings validation failed: {e}")
        raise typer.Exit(code=1)

    console.print("[green]✓[/green] Settings are valid.")
    console.print(f"  Environment: {settings.env}")
    console.print(f"  Headless: {settings.browser.headless}")
    console.print(f"  Private hosts blocked: {settings.guard.block_private_ips}")
    console.print(f"  Trace: {settings.trace.file or 'auto'}" if settings.trace.enabled else "  Trace: off")
