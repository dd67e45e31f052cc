"""
Response Table — the store behind asynchronous requests.

Each asynchronous request gets a ``PendingRequest`` keyed by request id. The
background task that runs the request moves it from ``pending`` to
``complete`` or ``error`` exactly once; later transitions are refused. Unknown
ids are answered with a synthetic ``not-found`` snapshot rather than an
exception, because a purged or mistyped id is an ordinary outcome for a
poller.

All methods are synchronous and never await, so each one runs as a single
step on the event loop.
"""

from __future__ import annotations

import itertools
import time
import uuid
from typing import Optional

import structlog

from agentfleet.models import PendingRequest, RequestStatus

logger = structlog.get_logger(__name__)


class RequestIdGenerator:
    """``<agent>-<counter:06d>-<random8>``: sortable per process, collision resistant."""

    def __init__(self) -> None:
        self._counter = itertools.count(1)

    def next_id(self, agent_name: str) -> str:
        n = next(self._counter)
        return f"{agent_name}-{n:06d}-{uuid.uuid4().hex[:8]}"


class ResponseTable:
    """Request id → PendingRequest."""

    def __init__(self) -> None:
        self._entries: dict[str, PendingRequest] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._entries

    def add_pending(self, request_id: str, agent_name: str, prompt: str) -> PendingRequest:
        if request_id in self._entries:
            raise KeyError(f"Request id already in use: {request_id}")
        entry = PendingRequest(
            request_id=request_id,
            agent_name=agent_name,
            prompt=prompt,
            status="pending",
            submitted_at=time.time(),
        )
        self._entries[request_id] = entry
        return entry

    def _finish(self, request_id: str, **update: object) -> bool:
        entry = self._entries.get(request_id)
        if entry is None:
            # Purged while in flight is impossible (clear() keeps pending),
            # so this is a caller bug; drop the late result.
            logger.warning("responses.finish_unknown", request_id=request_id)
            return False
        if entry.status != "pending":
            logger.warning(
                "responses.already_terminal",
                request_id=request_id,
                status=entry.status,
            )
            return False
        self._entries[request_id] = entry.model_copy(
            update={**update, "completed_at": time.time()}
        )
        return True

    def complete(self, request_id: str, result: str) -> bool:
        return self._finish(request_id, status="complete", result=result)

    def fail(self, request_id: str, error: str, error_kind: Optional[str] = None) -> bool:
        return self._finish(request_id, status="error", error=error, error_kind=error_kind)

    def get(self, request_id: str) -> PendingRequest:
        entry = self._entries.get(request_id)
        if entry is None:
            return PendingRequest(request_id=request_id, status="not-found")
        return entry

    def pending(self) -> dict[str, PendingRequest]:
        return {rid: e for rid, e in self._entries.items() if e.status == "pending"}

    def responses(self, status: Optional[RequestStatus] = None) -> dict[str, PendingRequest]:
        if status is None:
            return dict(self._entries)
        return {rid: e for rid, e in self._entries.items() if e.status == status}

    def clear(self) -> int:
        """Drop every non-pending entry. Returns how many were removed."""
        before = len(self._entries)
        self._entries = self.pending()
        return before - len(self._entries)
