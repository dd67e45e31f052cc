"""
Agent Process — one spawned agent binary and its pipes.

The process is started in its own session so that ``terminate()`` can take
down the whole tree (agents routinely start tool subprocesses of their own).
stderr is drained into the debug log; an agent that writes a lot of
diagnostics must never stall on a full pipe.
"""

from __future__ import annotations

import asyncio
import os
import signal
from pathlib import Path
from typing import Optional

import structlog

from agentfleet.transport import LineTransport

logger = structlog.get_logger(__name__)


class AgentProcess:
    """Owns one subprocess, its line transport and its stderr drain."""

    def __init__(self, name: str, proc: asyncio.subprocess.Process, argv: list[str]):
        self.name = name
        self.argv = argv
        self._proc = proc
        self.transport = LineTransport(proc.stdin, proc.stdout, name=name)
        self._terminated = False
        self._stderr_task: Optional[asyncio.Task[None]] = None
        if proc.stderr is not None:
            self._stderr_task = asyncio.create_task(
                self._drain_stderr(), name=f"agent-stderr-{name}"
            )

    @classmethod
    async def launch(
        cls,
        name: str,
        argv: list[str],
        *,
        cwd: Optional[Path] = None,
        stream_limit: int = 2**24,
    ) -> "AgentProcess":
        """Start *argv* with piped stdio in a new process group."""
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd else None,
            limit=stream_limit,
            start_new_session=True,
        )
        logger.debug("process.started", agent=name, pid=proc.pid, argv=argv)
        return cls(name, proc, argv)

    @property
    def pid(self) -> Optional[int]:
        return self._proc.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.returncode

    @property
    def running(self) -> bool:
        return not self._terminated and self._proc.returncode is None

    async def _drain_stderr(self) -> None:
        stream = self._proc.stderr
        try:
            while True:
                line = await stream.readline()
                if not line:
                    return
                logger.debug(
                    "process.stderr",
                    agent=self.name,
                    line=line.decode("utf-8", errors="replace").rstrip(),
                )
        except (ValueError, ConnectionResetError):
            # Oversized or broken stderr is not worth failing the agent over.
            return

    def _signal_tree(self, sig: int) -> None:
        pid = self._proc.pid
        try:
            if hasattr(os, "killpg"):
                # start_new_session makes the child its own group leader.
                os.killpg(pid, sig)
            else:
                self._proc.send_signal(sig)
        except (ProcessLookupError, PermissionError, OSError):
            # Already gone.
            pass

    async def terminate(self, grace_seconds: float = 5.0) -> Optional[int]:
        """Close stdin, then SIGTERM and finally SIGKILL the process group.

        Safe to call more than once and on a process that already exited.
        Returns the exit code when known.
        """
        if self._terminated:
            return self._proc.returncode
        self._terminated = True

        stdin = self._proc.stdin
        if stdin is not None:
            try:
                stdin.close()
            except Exception:
                logger.debug("process.stdin_close_failed", agent=self.name, exc_info=True)

        if self._proc.returncode is None:
            self._signal_tree(signal.SIGTERM)
            try:
                await asyncio.wait_for(self._proc.wait(), timeout=grace_seconds)
            except asyncio.TimeoutError:
                logger.warning("process.kill_escalated", agent=self.name, pid=self.pid)
                self._signal_tree(getattr(signal, "SIGKILL", signal.SIGTERM))
                try:
                    await asyncio.wait_for(self._proc.wait(), timeout=grace_seconds or 1.0)
                except asyncio.TimeoutError:
                    logger.error("process.kill_failed", agent=self.name, pid=self.pid)

        if self._stderr_task is not None and not self._stderr_task.done():
            self._stderr_task.cancel()
            try:
                await self._stderr_task
            except asyncio.CancelledError:
                pass

        logger.debug("process.terminated", agent=self.name, returncode=self._proc.returncode)
        return self._proc.returncode
