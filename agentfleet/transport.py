"""
Line Transport — one JSON object per line over an agent's stdio.

Outbound, every request is a single ``user`` line. Inbound, the agent streams
``system``, ``assistant`` and finally ``result`` lines; ``result`` is the only
line that ends a turn. Inbound lines are decoded into a tagged union of
Pydantic models so the read loop works with typed variants rather than raw
dicts.

Failures are reported, never retried: a half-consumed stream cannot be
replayed safely, so whether to retry is the caller's decision.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Annotated, Any, Literal, Optional, Union

import structlog
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from agentfleet.errors import ProtocolError, TransportClosedError, TransportError

logger = structlog.get_logger(__name__)


class UserMessage(BaseModel):
    role: Literal["user"] = "user"
    content: str


class UserLine(BaseModel):
    """The only outbound message shape."""

    type: Literal["user"] = "user"
    message: UserMessage


class _InboundLine(BaseModel):
    # Agents add fields freely; keep them for inspection.
    model_config = {"extra": "allow"}

    @property
    def raw(self) -> dict[str, Any]:
        return self.model_dump()


class SystemLine(_InboundLine):
    type: Literal["system"]
    subtype: Optional[str] = None
    session_id: Optional[str] = None


class AssistantLine(_InboundLine):
    type: Literal["assistant"]
    message: dict[str, Any] = Field(default_factory=dict)
    session_id: Optional[str] = None

    @property
    def text(self) -> str:
        """Concatenated text blocks of this assistant message."""
        content = self.message.get("content")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            return "".join(
                block.get("text", "")
                for block in content
                if isinstance(block, dict) and block.get("type") == "text"
            )
        return ""


class ResultLine(_InboundLine):
    """Terminal line of a turn. ``session_id`` is required: it is the resume token."""

    type: Literal["result"]
    session_id: str
    result: str = ""
    subtype: Optional[str] = None
    is_error: bool = False


InboundLine = Annotated[
    Union[SystemLine, AssistantLine, ResultLine],
    Field(discriminator="type"),
]

_INBOUND_ADAPTER: TypeAdapter[Union[SystemLine, AssistantLine, ResultLine]] = TypeAdapter(
    InboundLine
)
_KNOWN_TYPES = frozenset({"system", "assistant", "result"})


def encode_user_message(content: str) -> bytes:
    """Serialize one outbound request line, newline included."""
    line = UserLine(message=UserMessage(content=content))
    return (line.model_dump_json() + "\n").encode("utf-8")


def decode_line(raw: bytes | str) -> Optional[Union[SystemLine, AssistantLine, ResultLine]]:
    """Decode one inbound line.

    Returns None for blank lines and for message types this transport does not
    know (newer agents may stream extra kinds). Raises ProtocolError for
    invalid UTF-8, anything that is not a JSON object, and known types that
    fail validation.
    """
    if isinstance(raw, bytes):
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolError(
                f"Line from agent is not valid UTF-8: {exc.reason}", line=repr(raw[:200])
            ) from exc
    else:
        text = raw
    text = text.strip()
    if not text:
        return None

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"Malformed JSON line from agent: {exc}", line=text[:200]) from exc

    if not isinstance(data, dict):
        raise ProtocolError("Protocol line is not a JSON object", line=text[:200])

    if data.get("type") not in _KNOWN_TYPES:
        return None

    try:
        return _INBOUND_ADAPTER.validate_python(data)
    except ValidationError as exc:
        raise ProtocolError(
            f"Invalid {data.get('type')!r} line from agent: {exc.error_count()} error(s)",
            line=text[:200],
        ) from exc


@dataclass
class Exchange:
    """Everything read during one turn."""

    result: ResultLine
    init: Optional[SystemLine] = None
    assistant: list[AssistantLine] = field(default_factory=list)

    @property
    def session_id(self) -> str:
        return self.result.session_id

    @property
    def text(self) -> str:
        return self.result.result

    def as_dict(self) -> dict[str, Any]:
        """The full decoded response, as returned by ``ask(..., full=True)``."""
        return {
            "init": self.init.raw if self.init else None,
            "assistant": [line.raw for line in self.assistant],
            "result": self.result.raw,
        }


class LineTransport:
    """Reads and writes protocol lines on one agent's stdin/stdout pair.

    Not safe for concurrent use: the owning agent serializes access.
    """

    def __init__(self, writer: asyncio.StreamWriter, reader: asyncio.StreamReader, name: str = ""):
        self._writer = writer
        self._reader = reader
        self._name = name

    async def send(self, content: str) -> None:
        """Write one user message line and flush it."""
        try:
            self._writer.write(encode_user_message(content))
            await self._writer.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise TransportClosedError(
                f"Agent '{self._name}' input stream is closed", agent=self._name
            ) from exc
        except OSError as exc:
            raise TransportError(
                f"Failed to write to agent '{self._name}': {exc}", agent=self._name
            ) from exc

    async def receive(self) -> Exchange:
        """Read lines until a ``result`` line arrives."""
        init: Optional[SystemLine] = None
        assistant: list[AssistantLine] = []

        while True:
            try:
                raw = await self._reader.readline()
            except (asyncio.LimitOverrunError, ValueError) as exc:
                raise TransportError(
                    f"Line from agent '{self._name}' exceeds the stream limit", agent=self._name
                ) from exc
            except (ConnectionResetError, BrokenPipeError) as exc:
                raise TransportClosedError(
                    f"Agent '{self._name}' output stream failed", agent=self._name
                ) from exc

            if not raw:
                raise TransportClosedError(
                    f"Agent '{self._name}' closed its output before a result line",
                    agent=self._name,
                )

            try:
                line = decode_line(raw)
            except ProtocolError as exc:
                exc.details.setdefault("agent", self._name)
                logger.warning("transport.protocol_error", agent=self._name, error=exc.message)
                raise

            if line is None:
                continue
            if isinstance(line, ResultLine):
                return Exchange(result=line, init=init, assistant=assistant)
            if isinstance(line, SystemLine):
                init = line
            elif isinstance(line, AssistantLine):
                assistant.append(line)
