"""CLI application — Click-based command group for agentfleet.

Every command builds a short-lived fleet, does its work, and kills all of its
agents on the way out.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any

import click

from agentfleet.main import configure_logging


def async_cmd(func):
    """Decorator to run an async Click command via asyncio.run()."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        return asyncio.run(func(*args, **kwargs))

    return wrapper


@click.group()
@click.option("--json", "json_output", is_flag=True, help="Structured JSON output")
@click.option("--verbose", "-v", count=True, help="Log progress (-vv for debug)")
@click.option("--no-color", is_flag=True, help="Disable ANSI colors")
@click.pass_context
def cli(ctx: click.Context, json_output: bool, verbose: int, no_color: bool) -> None:
    """Run and coordinate named agent processes."""
    ctx.ensure_object(dict)
    ctx.obj["json"] = json_output
    ctx.obj["no_color"] = no_color
    level = {0: logging.WARNING, 1: logging.INFO}.get(verbose, logging.DEBUG)
    configure_logging(level)


def _register_subcommands() -> None:
    from agentfleet.cli.agents import ask_cmd, broadcast_cmd, fork_cmd
    from agentfleet.cli.config_cmd import config_cmd

    cli.add_command(ask_cmd)
    cli.add_command(broadcast_cmd)
    cli.add_command(fork_cmd)
    cli.add_command(config_cmd)


_register_subcommands()
