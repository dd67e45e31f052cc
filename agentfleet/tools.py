"""
Worker Tools — fleet operations packaged as agent-callable tools.

An orchestrating agent (or any tool-using loop) can manage its own workers
through four tools: list, spawn, send a task, kill. Each tool carries a JSON
Schema for its input and an async handler bound to one AgentFleet. Results
are plain dicts so they serialize straight into a tool response.

Spawning through a tool is capped separately from the fleet-wide agent limit,
since a delegating agent should not be able to consume every slot.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import structlog

from agentfleet.errors import LimitExceededError
from agentfleet.fleet import AgentFleet

logger = structlog.get_logger(__name__)

ToolHandler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


@dataclass
class ToolDefinition:
    """A tool with its schema and handler."""

    name: str
    description: str
    input_schema: dict[str, Any]
    handler: Optional[ToolHandler] = None

    def to_api_format(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


class WorkerTools:
    """The worker-management tool set for one fleet."""

    def __init__(self, fleet: AgentFleet, max_workers: int = 5, default_model: str = "haiku"):
        self._fleet = fleet
        self.max_workers = max(1, int(max_workers))
        self.default_model = default_model
        self._tools: dict[str, ToolDefinition] = {}
        self._register_builtin()

    def _register_builtin(self) -> None:
        model_labels = sorted(self._fleet.config.model_ids)
        self.register(ToolDefinition(
            name="fleet_list_workers",
            description="List every live worker agent with its model, session and request count.",
            input_schema={"type": "object", "properties": {}, "required": []},
            handler=self._list_workers,
        ))
        self.register(ToolDefinition(
            name="fleet_spawn_worker",
            description=(
                "Start a new named worker agent. Use a cheap model for narrow, "
                "mechanical subtasks."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "name": {"type": "string", "description": "Unique name for the worker"},
                    "model": {
                        "type": "string",
                        "enum": model_labels,
                        "description": f"Model tier (default: {self.default_model})",
                    },
                },
                "required": ["name"],
            },
            handler=self._spawn_worker,
        ))
        self.register(ToolDefinition(
            name="fleet_send_task",
            description="Send a task prompt to a worker and wait for its answer.",
            input_schema={
                "type": "object",
                "properties": {
                    "worker": {"type": "string", "description": "Name of the worker"},
                    "prompt": {"type": "string", "description": "Task prompt for the worker"},
                },
                "required": ["worker", "prompt"],
            },
            handler=self._send_task,
        ))
        self.register(ToolDefinition(
            name="fleet_kill_worker",
            description="Terminate a worker agent and free its slot.",
            input_schema={
                "type": "object",
                "properties": {
                    "worker": {"type": "string", "description": "Name of the worker to kill"},
                },
                "required": ["worker"],
            },
            handler=self._kill_worker,
        ))

    def register(self, tool: ToolDefinition) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool
        logger.debug("worker_tools.registered", name=tool.name)

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def list_tools(self) -> list[str]:
        return list(self._tools)

    def get_api_tools(self) -> list[dict[str, Any]]:
        return [tool.to_api_format() for tool in self._tools.values()]

    async def call(self, name: str, params: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """Dispatch a tool call by name."""
        tool = self._tools.get(name)
        if tool is None or tool.handler is None:
            raise KeyError(f"Tool not found: {name} (available: {', '.join(self._tools)})")
        return await tool.handler(params or {})

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _list_workers(self, params: dict[str, Any]) -> dict[str, Any]:
        workers = [
            {
                "name": info.name,
                "model": info.model,
                "status": info.status,
                "pid": info.pid,
                "requests": info.request_count,
                "created_at": info.created_at,
                "session_id": info.session_id,
            }
            for info in self._fleet.list_agents()
        ]
        return {
            "workers": workers,
            "count": len(workers),
            "limit": self.max_workers,
            "stats": self._fleet.stats().model_dump(),
        }

    async def _spawn_worker(self, params: dict[str, Any]) -> dict[str, Any]:
        current = len(self._fleet.list_agents())
        if current >= self.max_workers:
            logger.warning("worker_tools.limit_exceeded", current=current, limit=self.max_workers)
            raise LimitExceededError(
                "Worker limit exceeded", limit=self.max_workers, current=current
            )
        model = params.get("model") or self.default_model
        info = await self._fleet.spawn(params["name"], model=model)
        return {
            "status": "spawned",
            "worker": info.name,
            "model": model,
            "pid": info.pid,
            "stats": self._fleet.stats().model_dump(),
        }

    async def _send_task(self, params: dict[str, Any]) -> dict[str, Any]:
        worker = params["worker"]
        prompt = params["prompt"]
        logger.info("worker_tools.task_sent", worker=worker, prompt_length=len(prompt))

        start = time.monotonic()
        response = await self._fleet.ask(worker, prompt)
        elapsed_ms = int((time.monotonic() - start) * 1000)

        logger.info(
            "worker_tools.task_received",
            worker=worker,
            response_length=len(response),
            elapsed_ms=elapsed_ms,
        )
        return {
            "status": "complete",
            "worker": worker,
            "response": response,
            "elapsed_ms": elapsed_ms,
            "stats": self._fleet.stats().model_dump(),
        }

    async def _kill_worker(self, params: dict[str, Any]) -> dict[str, Any]:
        worker = params["worker"]
        await self._fleet.kill(worker)
        return {
            "status": "killed",
            "worker": worker,
            "stats": self._fleet.stats().model_dump(),
        }
