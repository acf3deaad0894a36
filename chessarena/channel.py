# Path: chessarena/channel.py
"""
Purpose: Line-oriented transports to a UCI engine.

- SubprocessChannel: spawns the engine command and talks over stdin/stdout.
- QueueChannel: two asyncio queues (lines sent / lines received), for
  in-process engines and tests.

readline() contract, shared by both:
  None  -> timed out
  ""    -> stream closed
  "..." -> line (stripped)
"""
from __future__ import annotations

import asyncio
import logging
import os
from collections import deque
from typing import Deque, Optional, Protocol

log = logging.getLogger(__name__)


class LineChannel(Protocol):
    async def open(self) -> None: ...

    async def send(self, line: str) -> None: ...

    async def readline(self, timeout: float) -> Optional[str]: ...

    async def close(self) -> None: ...


class SubprocessChannel:
    def __init__(self, cmd: str):
        self.cmd = cmd
        self.proc: Optional[asyncio.subprocess.Process] = None
        self.last_lines: Deque[str] = deque(maxlen=50)

    @property
    def alive(self) -> bool:
        return self.proc is not None and self.proc.returncode is None

    async def open(self) -> None:
        log.info("starting engine: %s", self.cmd)
        self.proc = await asyncio.create_subprocess_shell(
            self.cmd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
            env=os.environ.copy(),
        )

    async def send(self, line: str) -> None:
        if not self.alive or self.proc.stdin is None:
            raise ConnectionError("engine process is not running")
        log.debug(">> %s", line)
        self.proc.stdin.write((line + "\n").encode("utf-8"))
        await self.proc.stdin.drain()

    async def readline(self, timeout: float) -> Optional[str]:
        if self.proc is None or self.proc.stdout is None:
            return ""
        try:
            raw = await asyncio.wait_for(self.proc.stdout.readline(), timeout=max(0.0, timeout))
        except asyncio.TimeoutError:
            return None
        if not raw:
            return ""
        txt = raw.decode("utf-8", errors="replace").strip()
        self.last_lines.append(txt)
        log.debug("<< %s", txt)
        return txt

    async def close(self) -> None:
        if self.alive:
            try:
                await self.send("quit")
                await asyncio.sleep(0.1)
            except (ConnectionError, OSError):
                pass
            if self.alive:
                self.proc.kill()
            await self.proc.wait()
        self.proc = None


class QueueChannel:
    """In-memory channel; the engine side reads `outbound` and writes `inbound`."""

    def __init__(self) -> None:
        self.outbound: asyncio.Queue = asyncio.Queue()
        self.inbound: asyncio.Queue = asyncio.Queue()
        self.sent: list = []
        self.closed = False

    async def open(self) -> None:
        self.closed = False

    async def send(self, line: str) -> None:
        if self.closed:
            raise ConnectionError("channel closed")
        self.sent.append(line)
        await self.outbound.put(line)

    async def readline(self, timeout: float) -> Optional[str]:
        try:
            line = await asyncio.wait_for(self.inbound.get(), timeout=max(0.0, timeout))
        except asyncio.TimeoutError:
            return None
        if line is None:
            return ""
        return line.strip()

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            await self.outbound.put(None)

    # engine side
    def emit(self, line: Optional[str]) -> None:
        """Queue a line from the engine; None closes the stream."""
        self.inbound.put_nowait(line)
