"""Tests for agentfleet.registry — spawn, fork, kill and name uniqueness."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from agentfleet.audit import MemoryAuditSink
from agentfleet.config import DEFAULT_MODEL_IDS, FleetConfig
from agentfleet.errors import (
    AgentExistsError,
    AgentNotFoundError,
    InvalidArgumentError,
    LimitExceededError,
    TransportError,
)
from agentfleet.registry import AgentRegistry


def _mock_process(pid: int = 4242) -> MagicMock:
    proc = MagicMock()
    proc.pid = pid
    proc.running = True
    proc.terminate = AsyncMock(return_value=0)
    return proc


def _registry(audit=None, **config_kwargs) -> tuple[AgentRegistry, list[list[str]]]:
    """Registry with a launcher that records argv instead of starting processes."""
    launched: list[list[str]] = []

    async def launcher(name, argv, **kwargs):
        launched.append(argv)
        await asyncio.sleep(0.01)
        return _mock_process(pid=1000 + len(launched))

    config = FleetConfig(audit_log_path=None, **config_kwargs)
    return AgentRegistry(config, audit=audit, launcher=launcher), launched


class TestSpawnWithMockLauncher:
    @pytest.mark.asyncio
    async def test_spawn_resolves_model(self):
        registry, launched = _registry()
        info = await registry.spawn("a", model="haiku")
        assert info.model == "haiku"
        assert info.model_id == DEFAULT_MODEL_IDS["haiku"]
        assert info.session_id is None
        assert launched[0][-2:] == ["--model", DEFAULT_MODEL_IDS["haiku"]]
        assert registry.stats.spawns == 1

    @pytest.mark.asyncio
    async def test_duplicate_name_rejected(self):
        audit = MemoryAuditSink()
        registry, launched = _registry(audit=audit)
        await registry.spawn("a")
        with pytest.raises(AgentExistsError):
            await registry.spawn("a")
        assert registry.names() == ["a"]
        assert len(launched) == 1
        failed = [e for e in audit.of_type("agent.spawned") if e.outcome == "error"]
        assert len(failed) == 1

    @pytest.mark.asyncio
    async def test_concurrent_same_name_spawn_has_one_winner(self):
        registry, launched = _registry()
        results = await asyncio.gather(
            *(registry.spawn("same") for _ in range(5)), return_exceptions=True
        )
        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, AgentExistsError)]
        assert len(winners) == 1
        assert len(losers) == 4
        assert len(launched) == 1
        assert registry.names() == ["same"]

    @pytest.mark.asyncio
    async def test_empty_name_rejected(self):
        registry, launched = _registry()
        with pytest.raises(InvalidArgumentError):
            await registry.spawn("  ")
        assert launched == []

    @pytest.mark.asyncio
    async def test_agent_limit_counts_reservations(self):
        registry, _ = _registry(max_agents=2)
        results = await asyncio.gather(
            registry.spawn("a"), registry.spawn("b"), registry.spawn("c"),
            return_exceptions=True,
        )
        assert sum(isinstance(r, LimitExceededError) for r in results) == 1
        assert len(registry) == 2

    @pytest.mark.asyncio
    async def test_launch_failure_releases_name(self):
        async def failing(name, argv, **kwargs):
            raise FileNotFoundError("no such binary")

        audit = MemoryAuditSink()
        registry = AgentRegistry(FleetConfig(audit_log_path=None), audit=audit, launcher=failing)
        with pytest.raises(TransportError):
            await registry.spawn("a")
        assert not registry.exists("a")
        assert audit.events[-1].outcome == "error"

        # The name was released.
        registry._launch = AsyncMock(return_value=_mock_process())
        info = await registry.spawn("a")
        assert info.name == "a"

    @pytest.mark.asyncio
    async def test_spawn_from_session_requires_id(self):
        audit = MemoryAuditSink()
        registry, launched = _registry(audit=audit)
        with pytest.raises(InvalidArgumentError):
            await registry.spawn_from_session("child", "")
        assert launched == []
        assert audit.of_type("agent.forked")[0].outcome == "error"

    @pytest.mark.asyncio
    async def test_spawn_from_session_passes_resume(self):
        registry, launched = _registry()
        info = await registry.spawn_from_session("child", "sess-123", model="opus")
        assert info.forked_from == "sess-123"
        assert info.session_id == "sess-123"
        assert launched[0][-4:] == ["--model", DEFAULT_MODEL_IDS["opus"], "--resume", "sess-123"]
        assert registry.stats.forks == 1
        assert registry.stats.spawns == 0
        assert [a.name for a in registry.list_forks("sess-123")] == ["child"]

    @pytest.mark.asyncio
    async def test_fork_needs_a_session(self):
        audit = MemoryAuditSink()
        registry, _ = _registry(audit=audit)
        await registry.spawn("base")
        with pytest.raises(InvalidArgumentError, match="no session yet"):
            await registry.fork("base", "child")
        with pytest.raises(AgentNotFoundError):
            await registry.fork("missing", "child")
        errors = [e.error for e in audit.of_type("agent.forked")]
        assert errors == ["source has no session", "source not found"]

    @pytest.mark.asyncio
    async def test_kill_unknown(self):
        audit = MemoryAuditSink()
        registry, _ = _registry(audit=audit)
        with pytest.raises(AgentNotFoundError):
            await registry.kill("ghost")
        assert audit.of_type("agent.killed")[0].outcome == "error"

    @pytest.mark.asyncio
    async def test_kill_survives_terminate_failure(self):
        registry, _ = _registry()
        await registry.spawn("a")
        registry.get("a").process.terminate = AsyncMock(side_effect=RuntimeError("stuck"))
        assert await registry.kill("a") == {"name": "a", "status": "killed"}
        assert not registry.exists("a")
        assert registry.stats.kills == 1

    @pytest.mark.asyncio
    async def test_get_unknown_lists_available(self):
        registry, _ = _registry()
        await registry.spawn("b")
        await registry.spawn("a")
        with pytest.raises(AgentNotFoundError) as exc_info:
            registry.get("c")
        assert exc_info.value.details["available"] == ["a", "b"]


class TestRegistryWithFakeAgent:
    @pytest.mark.asyncio
    async def test_spawn_and_kill_lifecycle(self, fleet, audit_sink):
        info = await fleet.spawn("a")
        assert info.status == "running"
        assert info.pid is not None
        assert fleet.exists("a")

        assert await fleet.kill("a") == {"name": "a", "status": "killed"}
        assert not fleet.exists("a")
        assert fleet.list_agents() == []

        # Name is immediately reusable.
        again = await fleet.spawn("a")
        assert again.pid != info.pid

        types = [e.event_type for e in audit_sink.events]
        assert types == ["agent.spawned", "agent.killed", "agent.spawned"]

    @pytest.mark.asyncio
    async def test_startup_flags_reach_the_agent(self, fleet):
        await fleet.spawn("a", model="sonnet")
        reply = json.loads(await fleet.ask("a", "__whoami__"))
        assert reply["model"] == DEFAULT_MODEL_IDS["sonnet"]
        assert reply["resume"] is None

        session_id = fleet.info("a").session_id
        await fleet.fork("a", "b", model="claude-custom-1")
        reply = json.loads(await fleet.ask("b", "__whoami__"))
        assert reply["model"] == "claude-custom-1"
        assert reply["resume"] == session_id

    @pytest.mark.asyncio
    async def test_kill_all(self, fleet):
        for name in ("x", "y", "z"):
            await fleet.spawn(name)
        result = await fleet.kill_all()
        assert sorted(result["killed"]) == ["x", "y", "z"]
        assert fleet.list_agents() == []
        assert fleet.stats().kills == 3
