"""
Audit Events — an append-only record of what the fleet did to its agents.

Spawn, fork, kill and relay each produce one typed event. Events are Pydantic
models whose ``event_type`` is derived from the class name
(``AgentSpawnedEvent`` → ``agent.spawned``), so sinks and readers can filter
without a lookup table.

The fleet depends only on ``AuditSink.write``; where the records go is the
sink's business. A sink that raises must never break the operation that
emitted the event, so ``emit()`` logs and swallows sink failures.
"""

from __future__ import annotations

import logging
import re
import time
from pathlib import Path
from typing import Any, Literal, Optional, Protocol

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)

# "HTTPSRequest" → ["HTTPS", "Request"], "AgentSpawned" → ["Agent", "Spawned"]
_CAMEL_SPLIT_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z]|\d|\b)|[A-Z][a-z]*")


class FleetEvent(BaseModel):
    """Base class for every audit record."""

    event_type: str = ""
    agent_name: str
    outcome: Literal["ok", "error"] = "ok"
    error: Optional[str] = None
    timestamp: float = Field(default_factory=time.time)

    def model_post_init(self, __context: Any) -> None:
        if not self.event_type:
            name = type(self).__name__.removesuffix("Event")
            parts = _CAMEL_SPLIT_RE.findall(name)
            self.event_type = ".".join(p.lower() for p in parts) if parts else name.lower()


class AgentSpawnedEvent(FleetEvent):
    model: Optional[str] = None
    model_id: Optional[str] = None
    pid: Optional[int] = None


class AgentForkedEvent(FleetEvent):
    session_id: str
    source_name: Optional[str] = None
    model: Optional[str] = None
    model_id: Optional[str] = None
    pid: Optional[int] = None


class AgentKilledEvent(FleetEvent):
    model: Optional[str] = None
    request_count: int = 0


class MessageRelayedEvent(FleetEvent):
    """``agent_name`` is the recipient."""

    from_name: str
    request_id: Optional[str] = None


class BroadcastSentEvent(FleetEvent):
    """``agent_name`` is the excluded sender, or ``*`` when none."""

    targets: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)


class AuditSink(Protocol):
    def write(self, event: FleetEvent) -> None: ...


class MemoryAuditSink:
    """Keeps events in a list. Handy for tests and for in-process inspection."""

    def __init__(self) -> None:
        self.events: list[FleetEvent] = []

    def write(self, event: FleetEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[FleetEvent]:
        return [e for e in self.events if e.event_type == event_type]


class JsonlAuditSink:
    """Appends one JSON object per event to *path*.

    Backed by its own stdlib FileHandler so the audit trail is independent of
    whatever console logging the host process configured.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._handler = logging.FileHandler(str(self.path), mode="a", encoding="utf-8")
        self._handler.setLevel(logging.DEBUG)

        # One logger per sink; two sinks on the same path must not share handlers.
        stdlib_logger = logging.getLogger(f"agentfleet.audit.{id(self)}")
        stdlib_logger.handlers = [self._handler]
        self._stdlib_logger = stdlib_logger
        stdlib_logger.setLevel(logging.DEBUG)
        stdlib_logger.propagate = False

        self._logger = structlog.wrap_logger(
            stdlib_logger,
            processors=[
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.JSONRenderer(),
            ],
        )

    def write(self, event: FleetEvent) -> None:
        payload = event.model_dump()
        payload.pop("event_type")
        self._logger.info(event.event_type, **payload)

    def close(self) -> None:
        self._stdlib_logger.removeHandler(self._handler)
        self._handler.close()


def emit(sink: Optional[AuditSink], event: FleetEvent) -> None:
    """Write *event* to *sink*, logging (not raising) sink failures."""
    if sink is None:
        return
    try:
        sink.write(event)
    except Exception:
        logger.warning("audit.write_failed", event_type=event.event_type, exc_info=True)
