"""
CLI commands for environment lifecycle: create, get, list, destroy.

Thin wrappers over the gateway's environment commands.
"""

from __future__ import annotations

import click

from envorch.core.gateway import (
    CommandResult,
    CreateEnvironment,
    DestroyEnvironment,
    GetEnvironment,
    ListEnvironments,
)
from envorch.core.services.durations import format_duration
from envorch.ui.cli.common import DURATION, render_environment, render_plan, run


@click.command("environment:create")
@click.argument("name")
@click.option("--cluster", default=None, help="Target cluster (default: ENVORCH_CLUSTER).")
@click.option("--ttl", type=DURATION, default=None, help="Time to live, e.g. 12h, 1d, 1d12h.")
@click.option("--timeout", type=DURATION, default=None, help="Give up after this long.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def create(
    ctx: click.Context,
    name: str,
    cluster: str | None,
    ttl: int | None,
    timeout: int | None,
    as_json: bool,
) -> None:
    """Create an environment and provision it on a cluster."""

    def render(result: CommandResult) -> None:
        env = result.data["environment"]
        click.secho(f"✅ {result.message}", fg="green", bold=True)
        if env.get("expires_at"):
            click.echo(f"   Expires: {env['expires_at']} (TTL {format_duration(env['ttl_seconds'])})")

    run(
        ctx,
        CreateEnvironment(name=name, cluster=cluster, ttl_seconds=ttl, timeout=timeout),
        as_json,
        render,
    )


@click.command("environment:get")
@click.argument("name")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def get(ctx: click.Context, name: str, as_json: bool) -> None:
    """Show one environment."""
    verbose = ctx.obj.get("verbose", False)

    def render(result: CommandResult) -> None:
        env = result.data["environment"]
        deployed = env.get("deployed", {})
        render_environment(
            {
                **env,
                "components": [f"{n}@{c['version']}" for n, c in sorted(deployed.items())],
                "expires_at": result.data["summary"]["expires_at"],
            },
            verbose=verbose,
        )
        last = env.get("last_deploy")
        if last:
            color = {"ok": "green", "partial": "yellow", "failed": "red"}.get(last["status"], "white")
            click.echo("   Last deploy: ", nl=False)
            click.secho(last["status"], fg=color, nl=False)
            click.echo(f" ({last['operation_id']})")
            if last.get("error"):
                click.echo(f"     │ {last['error']}")
        click.echo()

    run(ctx, GetEnvironment(name=name), as_json, render)


@click.command("environment:list")
@click.option("--cluster", default=None, help="Only environments on this cluster.")
@click.option("--all", "include_destroyed", is_flag=True, help="Include destroyed environments.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def list_environments(
    ctx: click.Context,
    cluster: str | None,
    include_destroyed: bool,
    as_json: bool,
) -> None:
    """List environments."""

    def render(result: CommandResult) -> None:
        environments = result.data["environments"]
        if not environments:
            click.echo("📭 No environments")
            return
        click.secho(f"🌐 Environments ({len(environments)}):", fg="cyan", bold=True)
        for env in environments:
            flags = " ⚠️ degraded" if env["degraded"] else ""
            expiry = f"  expires {env['expires_at']}" if env["expires_at"] else ""
            click.echo(f"   • {env['name']:<24} {env['cluster']:<16} {env['state']:<11}{expiry}{flags}")

    run(ctx, ListEnvironments(cluster=cluster, include_destroyed=include_destroyed), as_json, render)


@click.command("environment:destroy")
@click.argument("name")
@click.option("--auto-approve", is_flag=True, help="Destroy without asking (otherwise preview only).")
@click.option("--force", "-f", is_flag=True, help="Tear down deployed components too.")
@click.option("--timeout", type=DURATION, default=None, help="Give up after this long.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def destroy(
    ctx: click.Context,
    name: str,
    auto_approve: bool,
    force: bool,
    timeout: int | None,
    as_json: bool,
) -> None:
    """Destroy an environment."""

    def render(result: CommandResult) -> None:
        applied = result.data.get("applied", False)
        click.secho(f"{'🗑️ ' if applied else '🔍'} {result.message}", fg="green" if applied else "cyan", bold=True)
        render_plan(result.data.get("plan", {}), applied)
        if result.data.get("environment") and not applied:
            click.echo("\n   💡 Re-run with --auto-approve to destroy")

    run(
        ctx,
        DestroyEnvironment(name=name, force=force, auto_approve=auto_approve, timeout=timeout),
        as_json,
        render,
    )

