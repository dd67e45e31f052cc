"""
Agent Fleet — the entry point for orchestrating code.

Owns the agent registry, the response table, the router, the config and the
audit sink, and exposes the whole operation set:

    async with AgentFleet() as fleet:
        await fleet.spawn("base", model="sonnet")
        await fleet.ask("base", "You are reviewing project X ...")
        await fleet.fork("base", "security")
        await fleet.fork("base", "perf", model="haiku")
        ids = fleet.broadcast("Report your top three findings", exclude="base")
        for name, request_id in ids.items():
            print(name, (await fleet.wait_response(request_id)).result)

``ask`` suspends the caller for the whole round trip. ``ask_async`` returns a
request id at once and runs the round trip on a background task; its outcome
lands in the response table and is never raised to anyone. Requests to the
same agent are serialized by a per-agent lock taken inside the worker, so
back-to-back asynchronous requests cannot interleave on one stdin/stdout pair.
Requests to different agents run in parallel.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import structlog

from agentfleet.audit import AuditSink, JsonlAuditSink
from agentfleet.config import FleetConfig
from agentfleet.errors import FleetError, LimitExceededError, TransportClosedError, TransportError
from agentfleet.models import AgentInfo, FleetStats, FleetStatus, Lineage, PendingRequest, RequestStatus
from agentfleet.registry import AgentRegistry, Launcher
from agentfleet.responses import RequestIdGenerator, ResponseTable
from agentfleet.router import Router

logger = structlog.get_logger(__name__)


class AgentFleet:
    """A set of named, long-lived agent processes and the requests sent to them."""

    def __init__(
        self,
        config: Optional[FleetConfig] = None,
        audit: Optional[AuditSink] = None,
        launcher: Optional[Launcher] = None,
    ):
        self.config = config or FleetConfig()
        if audit is None and self.config.audit_log_path is not None:
            audit = JsonlAuditSink(self.config.audit_log_path)
        self.audit = audit
        self.registry = AgentRegistry(self.config, audit=audit, launcher=launcher)
        self.responses = ResponseTable()
        self.router = Router(self)
        self._request_ids = RequestIdGenerator()
        self._tasks: set[asyncio.Task[None]] = set()

    async def __aenter__(self) -> "AgentFleet":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def spawn(self, name: str, model: Optional[str] = None) -> AgentInfo:
        return await self.registry.spawn(name, model)

    async def spawn_from_session(
        self, name: str, session_id: str, model: Optional[str] = None
    ) -> AgentInfo:
        return await self.registry.spawn_from_session(name, session_id, model)

    async def fork(self, source_name: str, new_name: str, model: Optional[str] = None) -> AgentInfo:
        return await self.registry.fork(source_name, new_name, model)

    async def kill(self, name: str) -> dict[str, Any]:
        return await self.registry.kill(name)

    async def kill_all(self) -> dict[str, list[str]]:
        return await self.registry.kill_all()

    async def restart(self, name: str, model: Optional[str] = None) -> AgentInfo:
        """Replace *name* with a fresh agent (no conversation history)."""
        if self.registry.exists(name):
            previous = self.registry.get(name)
            model = model or previous.model
            await self.registry.kill(name)
        return await self.registry.spawn(name, model)

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Kill every agent and let in-flight background requests settle."""
        await self.registry.kill_all()
        if self._tasks:
            _, pending = await asyncio.wait(list(self._tasks), timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning("fleet.shutdown_timeout", remaining=len(pending))
        close = getattr(self.audit, "close", None)
        if callable(close):
            close()

    # ------------------------------------------------------------------
    # Directory
    # ------------------------------------------------------------------

    def list_agents(self) -> list[AgentInfo]:
        return self.registry.list()

    def exists(self, name: str) -> bool:
        return self.registry.exists(name)

    def info(self, name: str) -> AgentInfo:
        return self.registry.info(name)

    def lineage(self, name: str) -> Lineage:
        return self.registry.lineage(name)

    def list_forks(self, session_id: str) -> list[AgentInfo]:
        return self.registry.list_forks(session_id)

    def stats(self) -> FleetStats:
        return self.registry.stats.model_copy()

    def reset_stats(self) -> None:
        self.registry.reset_stats()

    def status(self) -> FleetStatus:
        return FleetStatus(
            agents=self.registry.list(),
            pending_requests=len(self.responses.pending()),
            total_responses=len(self.responses),
            stats=self.stats(),
        )

    def context(self) -> dict[str, Any]:
        """What an agent needs to know to find and message its peers."""
        return {
            "agents": [info.model_dump() for info in self.registry.list()],
            "router": {"relay": "relay(from_name, to_name, message)",
                       "broadcast": "broadcast(message, exclude=None)"},
            "self_discovery": "list_agents() returns every live agent",
        }

    # ------------------------------------------------------------------
    # Synchronous requests
    # ------------------------------------------------------------------

    async def ask(self, name: str, prompt: str, *, full: bool = False) -> Any:
        """Send *prompt* to *name* and wait for the terminal result.

        Returns the result text, or the full decoded exchange when *full* is
        set. No retries and no timeout; use ``ask_async`` plus
        ``wait_response`` to bound the wait.
        """
        agent = self.registry.get(name)
        async with agent.lock:
            if agent.killed or not agent.process.running:
                raise TransportClosedError(f"Agent '{name}' is no longer running", agent=name)
            if agent.broken:
                raise TransportError(
                    f"Agent '{name}' is out of sync after a failed turn; restart it",
                    agent=name,
                    reason=agent.broken,
                )
            limit = self.config.max_requests_per_agent
            if limit and agent.request_count >= limit:
                raise LimitExceededError(
                    f"Agent '{name}' reached its request limit ({limit})",
                    agent=name,
                    limit=limit,
                )

            logger.debug("fleet.ask", agent=name, prompt=prompt)
            transport = agent.process.transport
            try:
                await transport.send(prompt)
                exchange = await transport.receive()
            except (TransportError, asyncio.CancelledError) as exc:
                # Part of the turn may still be unread on stdout.
                agent.broken = type(exc).__name__
                logger.warning("fleet.agent_desynced", agent=name, reason=agent.broken)
                raise
            self.registry.record_response(agent, exchange.session_id)

        logger.debug(
            "fleet.answered",
            agent=name,
            session_id=exchange.session_id,
            request_count=agent.request_count,
            result=exchange.text,
        )
        return exchange.as_dict() if full else exchange.text

    # ------------------------------------------------------------------
    # Asynchronous requests
    # ------------------------------------------------------------------

    def ask_async(self, name: str, prompt: str) -> str:
        """Queue *prompt* for *name* and return its request id immediately.

        Must be called from within a running event loop.
        """
        self.registry.get(name)
        request_id = self._request_ids.next_id(name)
        self.responses.add_pending(request_id, name, prompt)

        task = asyncio.create_task(
            self._run_request(request_id, name, prompt), name=f"fleet-request-{request_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.debug("fleet.ask_async", agent=name, request_id=request_id)
        return request_id

    async def _run_request(self, request_id: str, name: str, prompt: str) -> None:
        try:
            result = await self.ask(name, prompt)
        except FleetError as exc:
            logger.info("fleet.request_failed", request_id=request_id, kind=exc.kind, error=exc.message)
            self.responses.fail(request_id, exc.message, exc.kind)
        except asyncio.CancelledError:
            self.responses.fail(request_id, "request cancelled", "cancelled")
            raise
        except Exception as exc:
            # No caller is waiting on this task; the table is the only place
            # the failure can surface.
            logger.error("fleet.request_crashed", request_id=request_id, error=str(exc), exc_info=True)
            self.responses.fail(request_id, str(exc), type(exc).__name__)
        else:
            self.responses.complete(request_id, result)

    def poll_response(self, request_id: str) -> PendingRequest:
        return self.responses.get(request_id)

    async def wait_response(
        self, request_id: str, timeout: Optional[float] = None
    ) -> PendingRequest:
        """Poll until *request_id* is finished or *timeout* seconds pass.

        A timeout returns a ``timeout`` snapshot; the request keeps running
        and its outcome still lands in the table.
        """
        if timeout is None:
            timeout = self.config.wait_timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            entry = self.responses.get(request_id)
            if entry.status != "pending":
                return entry
            remaining = deadline - loop.time()
            if remaining <= 0:
                return entry.model_copy(update={"status": "timeout", "timeout_seconds": timeout})
            await asyncio.sleep(min(self.config.poll_interval, remaining))

    def list_pending(self) -> dict[str, PendingRequest]:
        return self.responses.pending()

    def list_responses(self, status: Optional[RequestStatus] = None) -> dict[str, PendingRequest]:
        return self.responses.responses(status)

    def clear_responses(self) -> dict[str, int]:
        cleared = self.responses.clear()
        logger.debug("fleet.responses_cleared", cleared=cleared)
        return {"cleared": cleared}

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def relay(self, from_name: str, to_name: str, message: str) -> str:
        return self.router.relay(from_name, to_name, message)

    def broadcast(self, message: str, exclude: Optional[str] = None) -> dict[str, str]:
        return self.router.broadcast(message, exclude=exclude)
