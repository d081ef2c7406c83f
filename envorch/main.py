"""
envorch — CLI entrypoint.

Usage:
    envorch --help
    envorch environment:create preview-42 --cluster staging --ttl 1d
    envorch deploy -e preview-42 components/web.yml --auto-approve
    envorch environment:destroy preview-42 -f --auto-approve
"""

from __future__ import annotations

import json
from pathlib import Path

import click

from envorch import __version__
from envorch.core.observability.logging_config import resolve_level, setup_logging
from envorch.ui.cli.common import get_orchestrator
from envorch.ui.cli.deploy import deploy, destroy_deployment
from envorch.ui.cli.environment import create, destroy, get, list_environments
from envorch.ui.cli.reaper import reaper


@click.group()
@click.version_option(version=__version__, prog_name="envorch")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to envorch.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """envorch — ephemeral environment lifecycle orchestrator."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    setup_logging(level=resolve_level(verbose=verbose, quiet=quiet, debug=debug))


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def health(ctx: click.Context, as_json: bool) -> None:
    """Show system health — store, provisioners, circuit breakers, environments."""
    from envorch.core.observability.health import check_system_health

    orchestrator = get_orchestrator(ctx)
    system_health = check_system_health(
        orchestrator.registry,
        grace_seconds=float(orchestrator.settings.reaper_interval),
    )

    if as_json:
        click.echo(json.dumps(system_health.to_dict(), indent=2))
        return

    status_icons = {
        "healthy": ("💚", "green"),
        "degraded": ("🟡", "yellow"),
        "unhealthy": ("🔴", "red"),
        "unknown": ("❔", "white"),
    }
    icon, color = status_icons.get(system_health.status, ("❔", "white"))

    click.echo()
    click.secho(f"{icon} System Health: {system_health.status.upper()}", fg=color, bold=True)
    click.echo(f"   {system_health.timestamp}")
    click.echo()

    for component in system_health.components:
        c_icon, c_color = status_icons.get(component.status, ("❔", "white"))
        click.secho(f"   {c_icon} {component.name}", fg=c_color, bold=True)
        click.echo(f"      {component.message}")

        if ctx.obj.get("verbose") and component.details:
            for key, val in component.details.items():
                click.echo(f"      {key}: {val}")

    click.echo()


cli.add_command(create)
cli.add_command(get)
cli.add_command(list_environments)
cli.add_command(destroy)
cli.add_command(deploy)
cli.add_command(destroy_deployment)
cli.add_command(reaper)


if __name__ == "__main__":
    cli()
