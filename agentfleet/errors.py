"""Exception hierarchy for fleet operations.

Each error carries a stable ``kind`` string so callers (and the worker tools,
which serialize failures) can branch on the failure class without parsing
messages.
"""

from __future__ import annotations

from typing import Any


class FleetError(Exception):
    """Base class for every failure raised by the fleet."""

    kind = "fleet_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, **self.details}


class AgentExistsError(FleetError):
    kind = "already_exists"


class AgentNotFoundError(FleetError, LookupError):
    kind = "not_found"


class InvalidArgumentError(FleetError, ValueError):
    kind = "invalid_argument"


class LimitExceededError(FleetError):
    kind = "limit_exceeded"


class TransportError(FleetError):
    """Process I/O failed; the agent's stream state is no longer trustworthy."""

    kind = "transport"


class TransportClosedError(TransportError):
    """The agent's output closed before a terminal result line arrived."""


class ProtocolError(TransportError):
    """A line from the agent could not be decoded as a protocol message."""
