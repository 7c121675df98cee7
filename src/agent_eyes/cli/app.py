"""Unified CLI entry point for Agent Eyes.

Config precedence: settings.default.toml -> settings.<env>.toml -> settings.local.toml -> env vars (EYES_* with double underscores) -> CLI flags.
"""

from __future__ import annotations

import typer

from agent_eyes.cli.commands import check_url, run_plan, stability
from agent_eyes.cli.settings_cmd import settings_app

try:
    from importlib.metadata import version

    VERSION = version("agent-eyes")
except Exception:
    VERSION = "unknown"

APP_HELP = (
    "agent-eyes — resilient browser action runner. "
    "Executes JSON plans against a headless browser with retries, an SSRF guard and visual stability checks. "
    "Config precedence: settings.default.toml -> settings.local.toml -> env vars (EYES_* with __) -> CLI flags."
)

app = typer.Typer(add_completion=True, help=APP_HELP)

app.command("run")(run_plan)
app.command("check-url")(check_url)
app.command("stability")(stability)
app.add_typer(settings_app, name="settings")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context, version: bool = typer.Option(False, "--version", help="Show version and exit.")) -> None:
    """Show help when no subcommand is provided."""
    if version:
        typer.echo(f"agent-eyes {VERSION}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


if __name__ == "__main__":
    app()
