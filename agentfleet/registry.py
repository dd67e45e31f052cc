"""
Agent Registry — the table of named, live agents.

Every lookup and mutation of agent records goes through here. The registry
owns each agent's process exclusively; callers only ever receive AgentInfo
snapshots.

Spawning is two-phase: the name is reserved in a single synchronous step,
the process is launched, then the record is published. Two concurrent spawns
of the same name therefore cannot both succeed, and a slow launch does not
hold up unrelated spawns or kills.

Forking is a spawn that passes ``--resume <session_id>`` to the agent binary:
the child starts with the parent's conversation history and then evolves on
its own. It is the fleet's only form of checkpointing.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import structlog

from agentfleet.audit import (
    AgentForkedEvent,
    AgentKilledEvent,
    AgentSpawnedEvent,
    AuditSink,
    emit,
)
from agentfleet.config import FleetConfig
from agentfleet.errors import (
    AgentExistsError,
    AgentNotFoundError,
    FleetError,
    InvalidArgumentError,
    LimitExceededError,
    TransportError,
)
from agentfleet.models import AgentInfo, FleetStats, Lineage
from agentfleet.process import AgentProcess

logger = structlog.get_logger(__name__)

Launcher = Callable[..., Awaitable[AgentProcess]]


@dataclass
class Agent:
    """A registry record. Mutated only by the registry and by ``ask``."""

    name: str
    process: AgentProcess
    model: Optional[str] = None
    model_id: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    session_id: Optional[str] = None
    forked_from: Optional[str] = None
    request_count: int = 0
    killed: bool = False
    # Set when a turn failed part-way; the stream may hold a stale reply.
    broken: Optional[str] = None
    # Serializes use of the agent's single stdin/stdout pair.
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def status(self) -> str:
        if not self.process.running:
            return "exited"
        return "broken" if self.broken else "running"

    def info(self) -> AgentInfo:
        return AgentInfo(
            name=self.name,
            status=self.status,
            model=self.model,
            model_id=self.model_id,
            pid=self.process.pid,
            created_at=self.created_at,
            session_id=self.session_id,
            forked_from=self.forked_from,
            request_count=self.request_count,
        )

    def lineage(self) -> Lineage:
        return Lineage(
            name=self.name,
            session_id=self.session_id,
            forked_from=self.forked_from,
            created_at=self.created_at,
        )


class AgentRegistry:
    """Name → Agent, plus the spawn/fork/kill lifecycle."""

    def __init__(
        self,
        config: FleetConfig,
        audit: Optional[AuditSink] = None,
        launcher: Optional[Launcher] = None,
    ):
        self._config = config
        self._audit = audit
        self._launch = launcher or AgentProcess.launch
        self._agents: dict[str, Agent] = {}
        self._reserved: set[str] = set()
        self.stats = FleetStats()

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, name: object) -> bool:
        return name in self._agents

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, name: str) -> Agent:
        agent = self._agents.get(name)
        if agent is None:
            raise AgentNotFoundError(
                f"Agent '{name}' not found",
                name=name,
                available=sorted(self._agents),
            )
        return agent

    def exists(self, name: str) -> bool:
        return name in self._agents

    def names(self) -> list[str]:
        return list(self._agents)

    def list(self) -> list[AgentInfo]:
        return [agent.info() for agent in self._agents.values()]

    def info(self, name: str) -> AgentInfo:
        return self.get(name).info()

    def lineage(self, name: str) -> Lineage:
        return self.get(name).lineage()

    def list_forks(self, session_id: str) -> list[AgentInfo]:
        return [
            agent.info()
            for agent in self._agents.values()
            if agent.forked_from is not None and agent.forked_from == session_id
        ]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def spawn(self, name: str, model: Optional[str] = None) -> AgentInfo:
        """Start a fresh agent under *name*."""
        return await self._start(name, model)

    async def spawn_from_session(
        self,
        name: str,
        session_id: str,
        model: Optional[str] = None,
        *,
        source_name: Optional[str] = None,
    ) -> AgentInfo:
        """Start an agent that resumes the conversation identified by *session_id*."""
        if not session_id or not session_id.strip():
            emit(self._audit, AgentForkedEvent(
                agent_name=name or "",
                session_id="",
                source_name=source_name,
                outcome="error",
                error="session_id is required",
            ))
            raise InvalidArgumentError("session_id is required to spawn from a session", name=name)
        return await self._start(
            name, model, resume_session_id=session_id.strip(), source_name=source_name
        )

    async def fork(
        self,
        source_name: str,
        new_name: str,
        model: Optional[str] = None,
    ) -> AgentInfo:
        """Branch *source_name*'s current conversation into a new agent."""
        source = self._agents.get(source_name)
        if source is None or not source.session_id:
            error = "source not found" if source is None else "source has no session"
            emit(self._audit, AgentForkedEvent(
                agent_name=new_name or "",
                session_id="",
                source_name=source_name,
                model=model,
                outcome="error",
                error=error,
            ))
        if source is None:
            raise AgentNotFoundError(
                f"Agent '{source_name}' not found",
                name=source_name,
                available=sorted(self._agents),
            )
        if not source.session_id:
            raise InvalidArgumentError(
                f"Agent '{source_name}' has no session yet; send it at least one message first",
                source=source_name,
            )
        return await self.spawn_from_session(
            new_name, source.session_id, model, source_name=source_name
        )

    async def _start(
        self,
        name: str,
        model: Optional[str],
        *,
        resume_session_id: Optional[str] = None,
        source_name: Optional[str] = None,
    ) -> AgentInfo:
        model = model or self._config.default_model or None
        model_id = self._config.resolve_model(model)

        def _audit_failure(message: str) -> None:
            if resume_session_id:
                emit(self._audit, AgentForkedEvent(
                    agent_name=name or "",
                    session_id=resume_session_id,
                    source_name=source_name,
                    model=model,
                    model_id=model_id,
                    outcome="error",
                    error=message,
                ))
            else:
                emit(self._audit, AgentSpawnedEvent(
                    agent_name=name or "",
                    model=model,
                    model_id=model_id,
                    outcome="error",
                    error=message,
                ))

        # Validate and reserve in one step: nothing below awaits until the
        # name is in _reserved.
        if not name or not name.strip():
            _audit_failure("agent name is required")
            raise InvalidArgumentError("Agent name must be a non-empty string")
        if name in self._agents or name in self._reserved:
            _audit_failure("already exists")
            raise AgentExistsError(f"Agent '{name}' already exists", name=name)
        limit = self._config.max_agents
        if limit and len(self._agents) + len(self._reserved) >= limit:
            _audit_failure("agent limit reached")
            logger.warning("registry.limit_exceeded", name=name, limit=limit)
            raise LimitExceededError(
                f"Agent limit exceeded ({limit} live agents)",
                limit=limit,
                current=len(self._agents) + len(self._reserved),
            )
        self._reserved.add(name)

        argv = self._config.build_agent_args(model, resume_session_id=resume_session_id)
        logger.info(
            "registry.spawning",
            name=name,
            model=model_id,
            resume=resume_session_id,
        )
        try:
            try:
                process = await self._launch(
                    name,
                    argv,
                    cwd=self._config.working_dir,
                    stream_limit=self._config.stream_limit,
                )
            except OSError as exc:
                _audit_failure(str(exc))
                logger.error("registry.spawn_failed", name=name, error=str(exc))
                raise TransportError(
                    f"Failed to start agent '{name}': {exc}", name=name, argv=argv
                ) from exc

            agent = Agent(
                name=name,
                process=process,
                model=model,
                model_id=model_id,
                # Seeded with the parent's id; the first ask replaces it.
                session_id=resume_session_id,
                forked_from=resume_session_id,
            )
            self._agents[name] = agent
        finally:
            self._reserved.discard(name)

        if resume_session_id:
            self.stats.forks += 1
            emit(self._audit, AgentForkedEvent(
                agent_name=name,
                session_id=resume_session_id,
                source_name=source_name,
                model=model,
                model_id=model_id,
                pid=process.pid,
            ))
            logger.info(
                "registry.forked",
                name=name,
                source=source_name,
                session_id=resume_session_id,
                pid=process.pid,
            )
        else:
            self.stats.spawns += 1
            emit(self._audit, AgentSpawnedEvent(
                agent_name=name,
                model=model,
                model_id=model_id,
                pid=process.pid,
            ))
            logger.info("registry.spawned", name=name, model=model_id, pid=process.pid)

        return agent.info()

    async def kill(self, name: str) -> dict[str, Any]:
        """Terminate *name*'s process tree and drop it from the registry.

        The entry is removed before the process is torn down, so the name is
        reusable immediately. An ``ask`` in flight on this agent fails with a
        transport error.
        """
        agent = self._agents.pop(name, None)
        if agent is None:
            emit(self._audit, AgentKilledEvent(
                agent_name=name, outcome="error", error="not found"
            ))
            raise AgentNotFoundError(
                f"Agent '{name}' not found", name=name, available=sorted(self._agents)
            )
        agent.killed = True

        logger.info("registry.killing", name=name, pid=agent.process.pid)
        try:
            await agent.process.terminate(self._config.kill_grace_seconds)
        except Exception as exc:
            # Record is already gone; a stubborn process is logged, not resurrected.
            logger.warning("registry.terminate_failed", name=name, error=str(exc), exc_info=True)

        self.stats.kills += 1
        emit(self._audit, AgentKilledEvent(
            agent_name=name,
            model=agent.model,
            request_count=agent.request_count,
        ))
        logger.info("registry.killed", name=name)
        return {"name": name, "status": "killed"}

    async def kill_all(self) -> dict[str, list[str]]:
        """Kill every agent, continuing past individual failures."""
        killed: list[str] = []
        for name in list(self._agents):
            try:
                await self.kill(name)
            except FleetError as exc:
                logger.error("registry.kill_error", name=name, error=exc.message)
                continue
            killed.append(name)
        return {"killed": killed}

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def record_response(self, agent: Agent, session_id: str) -> None:
        """Apply a completed turn to *agent*'s record."""
        agent.session_id = session_id
        agent.request_count += 1
        self.stats.requests += 1

    def reset_stats(self) -> None:
        self.stats = FleetStats()
