"""
agentfleet — named, long-lived agent processes you can query, fork and wire
together.

Each agent is an external binary speaking newline-delimited JSON on
stdin/stdout. The fleet keeps a registry of them by name, sends requests
synchronously or as background tasks, forks new agents from an existing
agent's conversation, and relays or broadcasts messages between them.
"""

from __future__ import annotations

from agentfleet.config import FleetConfig
from agentfleet.errors import (
    AgentExistsError,
    AgentNotFoundError,
    FleetError,
    InvalidArgumentError,
    LimitExceededError,
    ProtocolError,
    TransportClosedError,
    TransportError,
)
from agentfleet.fleet import AgentFleet
from agentfleet.models import AgentInfo, FleetStats, FleetStatus, Lineage, PendingRequest

__all__ = [
    "AgentFleet",
    "FleetConfig",
    "AgentInfo",
    "Lineage",
    "PendingRequest",
    "FleetStats",
    "FleetStatus",
    "FleetError",
    "AgentExistsError",
    "AgentNotFoundError",
    "InvalidArgumentError",
    "LimitExceededError",
    "TransportError",
    "TransportClosedError",
    "ProtocolError",
]
