"""Tests for the agentfleet CLI."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest
from click.testing import CliRunner

from agentfleet.cli.app import cli
from agentfleet.config import DEFAULT_AGENT_ARGS

FAKE_AGENT = Path(__file__).resolve().parent / "fake_agent.py"


@pytest.fixture()
def fake_env(tmp_path, monkeypatch):
    """Point the CLI's FleetConfig at the fake agent."""
    monkeypatch.setenv("FLEET_AGENT_BINARY", sys.executable)
    monkeypatch.setenv("FLEET_AGENT_ARGS", json.dumps([str(FAKE_AGENT), *DEFAULT_AGENT_ARGS]))
    monkeypatch.setenv("FLEET_AUDIT_LOG", str(tmp_path / "audit.log"))
    monkeypatch.setenv("FLEET_KILL_GRACE", "2")
    monkeypatch.setenv("FLEET_POLL_INTERVAL", "0.01")
    return tmp_path


def test_help_lists_commands():
    result = CliRunner().invoke(cli, ["--help"])
    assert result.exit_code == 0
    for command in ("ask", "broadcast", "fork", "config"):
        assert command in result.output


def test_config_json(fake_env):
    result = CliRunner().invoke(cli, ["--json", "config"])
    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert data["agent_binary"] == sys.executable
    assert data["agent_args"][0] == str(FAKE_AGENT)


def test_ask(fake_env):
    result = CliRunner().invoke(cli, ["ask", "hello there"])
    assert result.exit_code == 0, result.output
    assert result.output.strip() == "echo: hello there"

    records = [json.loads(line) for line in (fake_env / "audit.log").read_text().splitlines()]
    assert [r["event"] for r in records] == ["agent.spawned", "agent.killed"]


def test_ask_full_json(fake_env):
    result = CliRunner().invoke(cli, ["--json", "ask", "hi"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["result"]["result"] == "echo: hi"


def test_ask_protocol_error_exits_nonzero(fake_env):
    result = CliRunner().invoke(cli, ["ask", "__garbage__"])
    assert result.exit_code != 0
    assert "transport" in result.output


def test_broadcast_json(fake_env):
    result = CliRunner().invoke(cli, ["--json", "broadcast", "-n", "2", "ping"])
    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert set(data) == {"agent-1", "agent-2"}
    assert all(entry["result"] == "echo: ping" for entry in data.values())


def test_fork_json(fake_env):
    result = CliRunner().invoke(cli, ["--json", "fork", "context", "task one", "task two"])
    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert set(data) == {"worker-1", "worker-2"}
    assert data["worker-1"]["result"] == "echo: task one"
    assert data["worker-1"]["forked_from"].startswith("sess-")
