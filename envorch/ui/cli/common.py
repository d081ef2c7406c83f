"""
Shared CLI plumbing: settings, orchestrator wiring, and output rendering.

Commands build a gateway command, run it through ``dispatch``, and
render the ``CommandResult`` either as JSON (``--json``) or as coloured
text. Errors exit 1.
"""

from __future__ import annotations

import json
import sys
from collections.abc import Callable
from typing import Any

import click

from envorch.core.gateway import Command, CommandResult, dispatch
from envorch.core.services.durations import parse_duration


class DurationType(click.ParamType):
    """Click parameter accepting ``90s``, ``30m``, ``1d12h`` or plain seconds."""

    name = "duration"

    def convert(self, value: Any, param: click.Parameter | None, ctx: click.Context | None) -> int:
        if isinstance(value, int):
            return value
        try:
            return parse_duration(value)
        except ValueError as e:
            self.fail(str(e), param, ctx)


DURATION = DurationType()


def get_orchestrator(ctx: click.Context):
    """The orchestrator for this invocation, built from settings on first use."""
    obj = ctx.ensure_object(dict)
    if obj.get("orchestrator") is None:
        from envorch.core.config.loader import ConfigError
        from envorch.core.services.orchestrator import build_orchestrator

        try:
            obj["orchestrator"] = build_orchestrator(get_settings(ctx))
        except ConfigError as e:
            click.secho(f"❌ {e}", fg="red", err=True)
            sys.exit(1)
    return obj["orchestrator"]


def get_settings(ctx: click.Context):
    obj = ctx.ensure_object(dict)
    if obj.get("settings") is None:
        from envorch.core.config.loader import load_settings

        obj["settings"] = load_settings(obj.get("config_path"))
    return obj["settings"]


def run(
    ctx: click.Context,
    command: Command,
    as_json: bool,
    render: Callable[[CommandResult], None] | None = None,
) -> CommandResult:
    """Dispatch, print, and exit non-zero on failure."""
    result = dispatch(command, get_orchestrator(ctx))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    elif not result.ok:
        render_error(result)
    elif render is not None:
        render(result)
    elif not ctx.obj.get("quiet"):
        click.secho(f"✅ {result.message}", fg="green")

    if result.exit_code:
        sys.exit(result.exit_code)
    return result


# ── Rendering ───────────────────────────────────────────────────

_ACTION_STYLE = {
    "CREATE": ("+", "green"),
    "UPDATE": ("~", "yellow"),
    "DESTROY": ("-", "red"),
}

_STATE_COLORS = {
    "PENDING": "yellow",
    "ACTIVE": "green",
    "DESTROYING": "magenta",
    "DESTROYED": "bright_black",
}


def render_error(result: CommandResult) -> None:
    error = result.error or {}
    click.secho(f"❌ {result.message}", fg="red", bold=True, err=True)

    for label in error.get("applied", []):
        click.secho(f"   ✓ {label}", fg="green", err=True)
    for label in error.get("failed", []):
        click.secho(f"   ✗ {label}", fg="red", err=True)
    for label in error.get("unapplied", []):
        click.secho(f"   ⊘ {label}", fg="yellow", err=True)

    if error.get("kind") == "has_active_deployment":
        click.echo("\n   💡 Run `envorch destroy --environment <name>` first, or pass -f", err=True)
    elif error.get("unapplied") or error.get("failed"):
        click.echo("\n   💡 Re-run the same command to retry the remaining actions", err=True)


def render_plan(plan: dict[str, Any], applied: bool) -> None:
    actions = plan.get("actions", [])
    if not actions:
        return
    for action in actions:
        symbol, color = _ACTION_STYLE.get(action["type"], ("?", "white"))
        version = action["version"]
        if action.get("previous_version") and action["previous_version"] != version:
            version = f"{action['previous_version']} → {version}"
        marker = "✓" if applied else symbol
        click.secho(f"   {marker} {action['type']:<8} {action['component']}@{version}", fg=color)


def render_environment(env: dict[str, Any], verbose: bool = False) -> None:
    state = env["state"]
    click.secho(f"\n🌐 {env['name']}", fg="cyan", bold=True)
    click.echo(f"   Cluster:  {env['cluster']}")
    click.echo("   State:    ", nl=False)
    click.secho(state, fg=_STATE_COLORS.get(state, "white"))
    if env.get("degraded"):
        click.secho("   ⚠️  Degraded: last deploy did not complete", fg="yellow")
    click.echo(f"   Created:  {env['created_at']}")
    expires = env.get("expires_at")
    if expires:
        click.echo(f"   Expires:  {expires}")

    components = env.get("components") or []
    if components:
        click.echo(f"   Components ({len(components)}):")
        for component in components:
            click.echo(f"     • {component}")
    elif verbose:
        click.echo("   Components: none")
