# agentfleet/config.py
"""
Configuration for the agent fleet.

All knobs flow through FleetConfig. Values are loaded from environment
variables (or a .env file at the project root) and validated with Pydantic,
so a fleet can be pointed at a different agent binary or a different model
table without touching code.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import structlog
from pydantic import BeforeValidator, Field, model_validator
from pydantic_settings import BaseSettings

logger = structlog.get_logger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"

# Flags that select the newline-delimited JSON protocol on the agent binary.
DEFAULT_AGENT_ARGS = [
    "-p",
    "--verbose",
    "--input-format",
    "stream-json",
    "--output-format",
    "stream-json",
]

DEFAULT_MODEL_IDS = {
    "haiku": "claude-3-5-haiku-20241022",
    "sonnet": "claude-sonnet-4-20250514",
    "opus": "claude-opus-4-20250514",
}


def _coerce_str_list(value: object) -> list[str]:
    """Coerce env-var values into a list of strings.

    Accepts:
      - An existing list     → passthrough with str coercion
      - JSON array str       → (parsed by pydantic-settings before this runs)
      - Whitespace-separated → ["-p", "--verbose"]
    """
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    if isinstance(value, str):
        return value.split()
    return []


ArgList = Annotated[list[str], BeforeValidator(_coerce_str_list)]


class FleetConfig(BaseSettings):
    """Configuration for spawning and talking to agent subprocesses."""

    agent_binary: str = Field("claude", alias="FLEET_AGENT_BINARY")
    agent_args: ArgList = Field(
        default_factory=lambda: list(DEFAULT_AGENT_ARGS), alias="FLEET_AGENT_ARGS"
    )
    model_ids: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_MODEL_IDS), alias="FLEET_MODEL_IDS"
    )
    default_model: str = Field("", alias="FLEET_DEFAULT_MODEL")
    working_dir: Optional[Path] = Field(None, alias="FLEET_WORKING_DIR")

    # Polling and process lifecycle
    poll_interval: float = Field(0.1, alias="FLEET_POLL_INTERVAL")
    wait_timeout: float = Field(60.0, alias="FLEET_WAIT_TIMEOUT")
    kill_grace_seconds: float = Field(5.0, alias="FLEET_KILL_GRACE")
    # asyncio's default 64 KiB line limit is far too small for tool-heavy turns.
    stream_limit: int = Field(16 * 1024 * 1024, alias="FLEET_STREAM_LIMIT")

    # Capacity guards (0 = unlimited)
    max_agents: int = Field(0, alias="FLEET_MAX_AGENTS")
    max_requests_per_agent: int = Field(0, alias="FLEET_MAX_REQUESTS_PER_AGENT")

    # Audit trail; unset disables the file sink
    audit_log_path: Optional[Path] = Field(
        Path("logs/agent-communication.log"), alias="FLEET_AUDIT_LOG"
    )

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "FleetConfig":
        self.poll_interval = max(0.001, float(self.poll_interval))
        self.wait_timeout = max(0.0, float(self.wait_timeout))
        self.kill_grace_seconds = max(0.0, float(self.kill_grace_seconds))
        self.stream_limit = max(64 * 1024, int(self.stream_limit))
        self.max_agents = max(0, int(self.max_agents))
        self.max_requests_per_agent = max(0, int(self.max_requests_per_agent))
        self.default_model = self.default_model.strip()
        return self

    def resolve_model(self, model: Optional[str]) -> Optional[str]:
        """Map a tier label to a concrete model id.

        Unknown names pass through verbatim so new model ids work without a
        config change. Falls back to ``default_model`` when *model* is empty.
        """
        name = (model or self.default_model or "").strip()
        if not name:
            return None
        return self.model_ids.get(name, name)

    def build_agent_args(
        self,
        model: Optional[str] = None,
        resume_session_id: Optional[str] = None,
    ) -> list[str]:
        """Full argv for one agent process."""
        args = [self.agent_binary, *self.agent_args]
        model_id = self.resolve_model(model)
        if model_id:
            args.extend(["--model", model_id])
        if resume_session_id:
            args.extend(["--resume", resume_session_id])
        return args

    def __repr__(self) -> str:
        return (
            f"FleetConfig(binary={self.agent_binary}, "
            f"default_model={self.default_model or '<binary default>'}, "
            f"max_agents={self.max_agents or 'unlimited'})"
        )
