"""Agent commands — ask, broadcast, fork."""

from __future__ import annotations

import asyncio
import json as json_mod
from typing import Optional

import click

from agentfleet.cli.app import async_cmd
from agentfleet.cli.formatters import build_table, get_console, preview, status_indicator
from agentfleet.config import FleetConfig
from agentfleet.errors import FleetError
from agentfleet.fleet import AgentFleet
from agentfleet.models import PendingRequest


def _fail(exc: FleetError) -> click.ClickException:
    return click.ClickException(f"{exc.kind}: {exc.message}")


async def _wait_all(
    fleet: AgentFleet, request_ids: dict[str, str], timeout: Optional[float]
) -> dict[str, PendingRequest]:
    names = list(request_ids)
    results = await asyncio.gather(
        *(fleet.wait_response(request_ids[name], timeout) for name in names)
    )
    return dict(zip(names, results))


def _render_results(
    ctx: click.Context,
    title: str,
    results: dict[str, PendingRequest],
    lineage: Optional[dict[str, Optional[str]]] = None,
) -> None:
    if ctx.obj.get("json"):
        payload = {name: entry.model_dump() for name, entry in results.items()}
        if lineage is not None:
            for name, forked_from in lineage.items():
                payload.setdefault(name, {})["forked_from"] = forked_from
        click.echo(json_mod.dumps(payload, indent=2))
        return

    columns = ["Agent", "Status", "Result"]
    if lineage is not None:
        columns.insert(1, "Forked from")
    rows = []
    for name, entry in results.items():
        row = [
            name,
            status_indicator(entry.status) + entry.status,
            preview(entry.result if entry.status == "complete" else entry.error),
        ]
        if lineage is not None:
            row.insert(1, (lineage.get(name) or "")[:12])
        rows.append(row)
    get_console(no_color=ctx.obj.get("no_color", False)).print(build_table(title, columns, rows))


@click.command("ask")
@click.argument("prompt")
@click.option("--name", default="default", show_default=True, help="Agent name")
@click.option("--model", "-m", default=None, help="Model tier or full model id")
@click.option("--full", is_flag=True, help="Print the full decoded exchange as JSON")
@click.pass_context
@async_cmd
async def ask_cmd(
    ctx: click.Context, prompt: str, name: str, model: Optional[str], full: bool
) -> None:
    """Spawn one agent, send PROMPT, print the answer."""
    config = FleetConfig()
    async with AgentFleet(config) as fleet:
        try:
            await fleet.spawn(name, model=model)
            answer = await fleet.ask(name, prompt, full=full or ctx.obj.get("json", False))
        except FleetError as exc:
            raise _fail(exc) from exc

    if isinstance(answer, dict):
        click.echo(json_mod.dumps(answer, indent=2))
    else:
        click.echo(answer)


@click.command("broadcast")
@click.argument("prompt")
@click.option("--agents", "-n", "count", default=3, show_default=True, type=click.IntRange(1))
@click.option("--model", "-m", default=None, help="Model tier or full model id")
@click.option("--timeout", "-t", default=None, type=float, help="Seconds to wait per agent")
@click.pass_context
@async_cmd
async def broadcast_cmd(
    ctx: click.Context, prompt: str, count: int, model: Optional[str], timeout: Optional[float]
) -> None:
    """Spawn N agents and send every one of them PROMPT."""
    config = FleetConfig()
    async with AgentFleet(config) as fleet:
        try:
            for i in range(1, count + 1):
                await fleet.spawn(f"agent-{i}", model=model)
        except FleetError as exc:
            raise _fail(exc) from exc
        request_ids = fleet.broadcast(prompt)
        results = await _wait_all(fleet, request_ids, timeout)

    _render_results(ctx, "Broadcast", results)


@click.command("fork")
@click.argument("base_prompt")
@click.argument("tasks", nargs=-1, required=True)
@click.option("--model", "-m", default=None, help="Model for the base agent")
@click.option("--worker-model", default=None, help="Model for forked workers (default: base model)")
@click.option("--timeout", "-t", default=None, type=float, help="Seconds to wait per worker")
@click.pass_context
@async_cmd
async def fork_cmd(
    ctx: click.Context,
    base_prompt: str,
    tasks: tuple[str, ...],
    model: Optional[str],
    worker_model: Optional[str],
    timeout: Optional[float],
) -> None:
    """Build context once with BASE_PROMPT, then fork one worker per TASK."""
    config = FleetConfig()
    async with AgentFleet(config) as fleet:
        request_ids: dict[str, str] = {}
        lineage: dict[str, Optional[str]] = {}
        try:
            await fleet.spawn("base", model=model)
            await fleet.ask("base", base_prompt)
            for i, task in enumerate(tasks, start=1):
                worker = f"worker-{i}"
                info = await fleet.fork("base", worker, model=worker_model or model)
                lineage[worker] = info.forked_from
                request_ids[worker] = fleet.ask_async(worker, task)
        except FleetError as exc:
            raise _fail(exc) from exc
        results = await _wait_all(fleet, request_ids, timeout)

    _render_results(ctx, "Forked workers", results, lineage=lineage)
