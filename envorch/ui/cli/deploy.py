"""
CLI commands for deployments: deploy a component graph, tear it down.
"""

from __future__ import annotations

from pathlib import Path

import click

from envorch.core.gateway import CommandResult, Deploy, DestroyDeployment
from envorch.ui.cli.common import DURATION, render_plan, run


def _render_plan_result(result: CommandResult, retry_hint: str) -> None:
    applied = result.data.get("applied", False)
    plan = result.data.get("plan", {})
    if not plan.get("actions"):
        click.secho(f"✅ {result.message}", fg="green")
        return

    icon, color = ("✅", "green") if applied else ("📋", "cyan")
    click.secho(f"{icon} {result.message}", fg=color, bold=True)
    render_plan(plan, applied)

    report = result.data.get("report")
    if report:
        click.echo(f"\n   Operation: {report['operation_id']}")
    if not applied:
        click.echo(f"\n   💡 Re-run with --auto-approve to {retry_hint}")


@click.command("deploy")
@click.option("--environment", "-e", required=True, help="Target environment.")
@click.option("--auto-approve", is_flag=True, help="Apply the plan (otherwise preview only).")
@click.option("--timeout", type=DURATION, default=None, help="Give up after this long.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.argument("component_file", type=click.Path(dir_okay=False, path_type=Path))
@click.pass_context
def deploy(
    ctx: click.Context,
    environment: str,
    auto_approve: bool,
    timeout: int | None,
    as_json: bool,
    component_file: Path,
) -> None:
    """Deploy COMPONENT_FILE and its dependencies into an environment."""
    run(
        ctx,
        Deploy(
            environment=environment,
            component_file=component_file,
            auto_approve=auto_approve,
            timeout=timeout,
        ),
        as_json,
        lambda result: _render_plan_result(result, "apply it"),
    )


@click.command("destroy")
@click.option("--environment", "-e", required=True, help="Environment to tear down.")
@click.option("--auto-approve", is_flag=True, help="Tear down (otherwise preview only).")
@click.option("--timeout", type=DURATION, default=None, help="Give up after this long.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def destroy_deployment(
    ctx: click.Context,
    environment: str,
    auto_approve: bool,
    timeout: int | None,
    as_json: bool,
) -> None:
    """Remove every deployed component; the environment itself stays."""
    run(
        ctx,
        DestroyDeployment(environment=environment, auto_approve=auto_approve, timeout=timeout),
        as_json,
        lambda result: _render_plan_result(result, "remove them"),
    )
