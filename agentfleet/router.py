"""
Router — agent-to-agent messaging on top of asynchronous requests.

``relay`` forwards a caller-composed message into another agent;
``broadcast`` fans one message out to every agent except an optional sender.
Both return request ids to be observed with ``poll_response`` or
``wait_response``.

The registry does not keep response text, so ``relay`` does not read the
sender's last answer itself: callers fold it into the message they pass.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

import structlog

from agentfleet.audit import BroadcastSentEvent, MessageRelayedEvent, emit
from agentfleet.errors import FleetError

if TYPE_CHECKING:
    from agentfleet.fleet import AgentFleet

logger = structlog.get_logger(__name__)


class Router:
    def __init__(self, fleet: "AgentFleet"):
        self._fleet = fleet

    def relay(self, from_name: str, to_name: str, message: str) -> str:
        """Send *message* to *to_name* on behalf of *from_name*. Returns the request id."""
        logger.debug("router.relay", from_agent=from_name, to_agent=to_name)
        try:
            request_id = self._fleet.ask_async(to_name, message)
        except FleetError as exc:
            emit(self._fleet.audit, MessageRelayedEvent(
                agent_name=to_name,
                from_name=from_name,
                outcome="error",
                error=exc.message,
            ))
            raise
        emit(self._fleet.audit, MessageRelayedEvent(
            agent_name=to_name,
            from_name=from_name,
            request_id=request_id,
        ))
        return request_id

    def broadcast(self, message: str, exclude: Optional[str] = None) -> dict[str, str]:
        """Send *message* to every agent but *exclude*. Returns name → request id.

        Targets are handled independently; an agent that disappears between
        the snapshot and its request is logged and left out of the result.
        """
        targets = [name for name in self._fleet.registry.names() if name != exclude]
        request_ids: dict[str, str] = {}
        failed: list[str] = []
        for name in targets:
            try:
                request_ids[name] = self._fleet.ask_async(name, message)
            except FleetError as exc:
                failed.append(name)
                logger.warning("router.broadcast_target_failed", agent=name, error=exc.message)

        emit(self._fleet.audit, BroadcastSentEvent(
            agent_name=exclude or "*",
            targets=list(request_ids),
            failed=failed,
            outcome="error" if failed else "ok",
            error=f"{len(failed)} target(s) failed" if failed else None,
        ))
        logger.info(
            "router.broadcast",
            exclude=exclude,
            sent=len(request_ids),
            failed=len(failed),
        )
        return request_ids
