"""Configuration command — show the effective FleetConfig."""

from __future__ import annotations

import json as json_mod

import click

from agentfleet.cli.formatters import build_table, get_console
from agentfleet.config import FleetConfig


@click.command("config")
@click.pass_context
def config_cmd(ctx: click.Context) -> None:
    """Show the configuration agents will be spawned with."""
    try:
        config = FleetConfig()
    except Exception as exc:
        raise click.ClickException(f"Invalid configuration: {exc}")

    data = config.model_dump(mode="json")
    if ctx.obj.get("json"):
        click.echo(json_mod.dumps(data, indent=2))
        return

    rows = []
    for key, value in data.items():
        if isinstance(value, (list, dict)):
            value = json_mod.dumps(value)
        rows.append([key, "" if value is None else value])
    console = get_console(no_color=ctx.obj.get("no_color", False))
    console.print(build_table("agentfleet configuration", ["Setting", "Value"], rows))
    console.print(f"argv: {' '.join(config.build_agent_args())}")
