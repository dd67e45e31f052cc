"""Tests for agentfleet.router — relay and broadcast."""

from __future__ import annotations

import pytest

from agentfleet.errors import AgentNotFoundError


class TestRelay:
    @pytest.mark.asyncio
    async def test_relay_delivers_to_target(self, fleet, audit_sink):
        await fleet.spawn("writer")
        await fleet.spawn("critic")
        draft = await fleet.ask("writer", "draft")

        request_id = fleet.relay("writer", "critic", f"Review this: {draft}")
        entry = await fleet.wait_response(request_id)
        assert entry.status == "complete"
        assert entry.agent_name == "critic"
        assert entry.result == "echo: Review this: echo: draft"

        event = audit_sink.of_type("message.relayed")[0]
        assert event.from_name == "writer"
        assert event.agent_name == "critic"
        assert event.request_id == request_id

    @pytest.mark.asyncio
    async def test_relay_to_unknown_target(self, fleet, audit_sink):
        await fleet.spawn("writer")
        with pytest.raises(AgentNotFoundError):
            fleet.relay("writer", "ghost", "hello")
        assert audit_sink.of_type("message.relayed")[0].outcome == "error"


class TestBroadcast:
    @pytest.mark.asyncio
    async def test_broadcast_reaches_everyone(self, fleet, audit_sink):
        for name in ("a", "b", "c"):
            await fleet.spawn(name)
        request_ids = fleet.broadcast("status?")
        assert set(request_ids) == {"a", "b", "c"}
        assert len(set(request_ids.values())) == 3

        for name, request_id in request_ids.items():
            entry = await fleet.wait_response(request_id)
            assert entry.status == "complete"
            assert entry.agent_name == name
            assert entry.result == "echo: status?"

        event = audit_sink.of_type("broadcast.sent")[0]
        assert sorted(event.targets) == ["a", "b", "c"]
        assert event.agent_name == "*"
        assert event.failed == []

    @pytest.mark.asyncio
    async def test_broadcast_excludes_sender(self, fleet):
        for name in ("a", "b", "c"):
            await fleet.spawn(name)
        request_ids = fleet.broadcast("hi", exclude="a")
        assert set(request_ids) == {"b", "c"}
        for request_id in request_ids.values():
            assert (await fleet.wait_response(request_id)).status == "complete"

    @pytest.mark.asyncio
    async def test_broadcast_to_empty_fleet(self, fleet):
        assert fleet.broadcast("anyone?") == {}
