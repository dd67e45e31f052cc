"""Tests for agentfleet.tools — worker-management tools."""

from __future__ import annotations

import pytest

from agentfleet.config import DEFAULT_MODEL_IDS
from agentfleet.errors import AgentNotFoundError, LimitExceededError
from agentfleet.tools import ToolDefinition, WorkerTools


class TestToolRegistration:
    @pytest.mark.asyncio
    async def test_builtin_tools(self, fleet):
        tools = WorkerTools(fleet)
        assert tools.list_tools() == [
            "fleet_list_workers",
            "fleet_spawn_worker",
            "fleet_send_task",
            "fleet_kill_worker",
        ]
        api = {t["name"]: t for t in tools.get_api_tools()}
        spawn_schema = api["fleet_spawn_worker"]["input_schema"]
        assert spawn_schema["required"] == ["name"]
        assert set(spawn_schema["properties"]["model"]["enum"]) == set(DEFAULT_MODEL_IDS)
        assert "handler" not in api["fleet_send_task"]

    @pytest.mark.asyncio
    async def test_duplicate_registration(self, fleet):
        tools = WorkerTools(fleet)
        with pytest.raises(ValueError):
            tools.register(ToolDefinition(
                name="fleet_list_workers", description="dup", input_schema={},
            ))

    @pytest.mark.asyncio
    async def test_unknown_tool(self, fleet):
        tools = WorkerTools(fleet)
        with pytest.raises(KeyError, match="Tool not found"):
            await tools.call("fleet_launch_rockets", {})


class TestToolHandlers:
    @pytest.mark.asyncio
    async def test_worker_round_trip(self, fleet):
        tools = WorkerTools(fleet)

        spawned = await tools.call("fleet_spawn_worker", {"name": "w1"})
        assert spawned["status"] == "spawned"
        assert spawned["model"] == "haiku"
        assert fleet.info("w1").model_id == DEFAULT_MODEL_IDS["haiku"]

        listed = await tools.call("fleet_list_workers")
        assert listed["count"] == 1
        assert listed["workers"][0]["name"] == "w1"
        assert listed["limit"] == 5

        result = await tools.call("fleet_send_task", {"worker": "w1", "prompt": "count lines"})
        assert result["status"] == "complete"
        assert result["response"] == "echo: count lines"
        assert result["elapsed_ms"] >= 0
        assert result["stats"]["requests"] == 1

        killed = await tools.call("fleet_kill_worker", {"worker": "w1"})
        assert killed["status"] == "killed"
        assert killed["stats"]["kills"] == 1
        assert fleet.list_agents() == []

    @pytest.mark.asyncio
    async def test_worker_limit(self, fleet):
        tools = WorkerTools(fleet, max_workers=1)
        await tools.call("fleet_spawn_worker", {"name": "w1", "model": "sonnet"})
        with pytest.raises(LimitExceededError, match="Worker limit exceeded"):
            await tools.call("fleet_spawn_worker", {"name": "w2"})
        assert fleet.info("w1").model == "sonnet"

    @pytest.mark.asyncio
    async def test_task_to_missing_worker(self, fleet):
        tools = WorkerTools(fleet)
        with pytest.raises(AgentNotFoundError):
            await tools.call("fleet_send_task", {"worker": "ghost", "prompt": "x"})
