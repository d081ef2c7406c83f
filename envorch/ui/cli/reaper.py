"""
CLI commands for the TTL reaper.
"""

from __future__ import annotations

import json

import click

from envorch.core.gateway import CommandResult, ReapExpired
from envorch.core.services.scheduler import PeriodicTask
from envorch.ui.cli.common import DURATION, get_orchestrator, get_settings, run


@click.group("reaper")
def reaper() -> None:
    """TTL reaper — destroy environments whose time-to-live has elapsed."""


def _render(result: CommandResult) -> None:
    data = result.data
    if not data.get("scanned"):
        click.echo("⏳ No expired environments")
        return
    click.secho(f"🧹 {result.message}", fg="cyan", bold=True)
    for name in data.get("destroyed", []):
        click.secho(f"   ✓ {name}", fg="green")
    for name in data.get("skipped", []):
        click.secho(f"   ⊘ {name} (busy, retry next scan)", fg="yellow")
    for name, error in data.get("failed", {}).items():
        click.secho(f"   ✗ {name}: {error}", fg="red")


@reaper.command("run")
@click.option("--once", is_flag=True, help="Scan once and exit.")
@click.option("--interval", type=DURATION, default=None, help="Seconds between scans (default: reaper_interval).")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON (with --once).")
@click.pass_context
def run_reaper(ctx: click.Context, once: bool, interval: int | None, as_json: bool) -> None:
    """Scan for expired environments and destroy them."""
    if once:
        run(ctx, ReapExpired(), as_json, _render)
        return

    orchestrator = get_orchestrator(ctx)
    interval = interval or get_settings(ctx).reaper_interval

    def scan() -> None:
        report = orchestrator.reap_expired()
        if as_json:
            click.echo(json.dumps(report.to_dict()))

    task = PeriodicTask(interval, scan, name="ttl-reaper")
    click.secho(f"🧹 Reaper running every {interval}s (Ctrl+C to stop)", fg="cyan")
    try:
        task.run_forever()
    except KeyboardInterrupt:
        task.stop()
        click.echo("\n   Stopped.")
