"""
Shared fixtures for the agentfleet test suite.

Integration tests run ``tests/fake_agent.py`` under the current interpreter
in place of the real agent binary, so the whole stack (process launch, line
protocol, registry, request table) is exercised without network or
credentials.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
import pytest_asyncio

from agentfleet.audit import MemoryAuditSink
from agentfleet.config import DEFAULT_AGENT_ARGS, FleetConfig
from agentfleet.fleet import AgentFleet

FAKE_AGENT = Path(__file__).resolve().parent / "fake_agent.py"


@pytest.fixture()
def fleet_config() -> FleetConfig:
    """Config that launches the fake agent with fast polling."""
    return FleetConfig(
        agent_binary=sys.executable,
        agent_args=[str(FAKE_AGENT), *DEFAULT_AGENT_ARGS],
        poll_interval=0.01,
        wait_timeout=10.0,
        kill_grace_seconds=2.0,
        audit_log_path=None,
    )


@pytest.fixture()
def audit_sink() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest_asyncio.fixture
async def fleet(fleet_config, audit_sink):
    """A fleet backed by the fake agent; every agent is killed afterwards."""
    f = AgentFleet(fleet_config, audit=audit_sink)
    yield f
    await f.shutdown()
