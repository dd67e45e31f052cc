"""
Fleet Data Models — public snapshots of agents and requests.

These Pydantic models are what callers see. Live process handles never leave
the registry; AgentInfo and Lineage are copies taken at call time.
PendingRequest is the unit stored in the response table: created ``pending``,
moved exactly once to a terminal status by the task that ran the request.
"""

from __future__ import annotations

import time
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

RequestStatus = Literal["pending", "complete", "error", "timeout", "not-found"]

TERMINAL_STATUSES = frozenset({"complete", "error"})


class AgentInfo(BaseModel):
    """Public metadata for one registered agent."""

    name: str
    status: Literal["running", "exited", "broken"] = "running"
    model: Optional[str] = None  # label as requested, e.g. "haiku"
    model_id: Optional[str] = None  # resolved backend identifier
    pid: Optional[int] = None
    created_at: float = Field(default_factory=time.time)
    session_id: Optional[str] = None
    forked_from: Optional[str] = None
    request_count: int = 0


class Lineage(BaseModel):
    """Where an agent's conversation came from."""

    name: str
    session_id: Optional[str] = None
    forked_from: Optional[str] = None
    created_at: float


class PendingRequest(BaseModel):
    """An asynchronous request and, once finished, its outcome."""

    request_id: str
    agent_name: Optional[str] = None
    prompt: Optional[str] = None
    status: RequestStatus = "pending"
    result: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    submitted_at: Optional[float] = None
    completed_at: Optional[float] = None
    timeout_seconds: Optional[float] = None  # set on synthetic timeout snapshots

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class FleetStats(BaseModel):
    """Running counters since the fleet was created (or last reset)."""

    spawns: int = 0
    forks: int = 0
    kills: int = 0
    requests: int = 0


class FleetStatus(BaseModel):
    """Whole-fleet snapshot."""

    agents: list[AgentInfo] = Field(default_factory=list)
    pending_requests: int = 0
    total_responses: int = 0
    stats: FleetStats = Field(default_factory=FleetStats)

    def summary(self) -> dict[str, Any]:
        return {
            "agents": len(self.agents),
            "pending_requests": self.pending_requests,
            "total_responses": self.total_responses,
        }
