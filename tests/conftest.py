"""
Shared fixtures: a scripted UCI engine on the far side of a QueueChannel,
engine clients wired to it, and a manual clock for sessions.
"""
import asyncio
from typing import Callable, List, Optional

import chess
import pytest

from chessarena.channel import QueueChannel
from chessarena.engine_client import EngineClient
from chessarena.search import FallbackSearch

START_FEN = chess.STARTING_FEN
BACK_RANK_MATE_FEN = "6k1/5ppp/8/8/8/8/8/R5K1 w - - 0 1"


def first_legal(fen: str) -> str:
    """Deterministic 'best' move the fake engine plays: first legal move in UCI order."""
    return sorted(m.uci() for m in chess.Board(fen).legal_moves)[0]


def default_script(fen: str, depth: int, multipv: int) -> List[str]:
    best = first_legal(fen)
    lines = [f"info depth {d} score cp {10 * d} pv {best}" for d in range(1, depth + 1)]
    return lines + [f"bestmove {best}"]


class FakeEngine:
    """
    Reads commands from channel.outbound and answers on channel.inbound.

    script(fen, depth, multipv) -> lines emitted after `go`
    delay(fen) -> seconds to wait before answering `go`
    answer_go=False leaves searches hanging until `stop`
    answer_ready=False ignores `isready` (after the handshake)
    """

    def __init__(self, channel: QueueChannel, script: Callable = default_script,
                 delay: Optional[Callable[[str], float]] = None, answer_go: bool = True,
                 answer_ready: bool = True):
        self.channel = channel
        self.script = script
        self.delay = delay
        self.answer_go = answer_go
        self.answer_ready = answer_ready
        self.received: List[str] = []
        self.searching = 0
        self.overlaps = 0
        self._answer: Optional[asyncio.Task] = None
        self.handshake_done = False
        self._fen = START_FEN
        self._multipv = 1
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while True:
            line = await self.channel.outbound.get()
            if line is None:
                return
            self.received.append(line)
            if line == "uci":
                self.channel.emit("id name FakeFish")
                self.channel.emit("uciok")
            elif line == "isready":
                if self.answer_ready or not self.handshake_done:
                    self.channel.emit("readyok")
                self.handshake_done = True
            elif line.startswith("position fen "):
                self._fen = line[len("position fen "):]
            elif line.startswith("setoption name MultiPV value "):
                self._multipv = int(line.rsplit(" ", 1)[1])
            elif line.startswith("go depth "):
                if self.searching:
                    self.overlaps += 1
                depth = int(line.rsplit(" ", 1)[1])
                self.searching += 1
                if self.answer_go:
                    self._answer = asyncio.get_running_loop().create_task(
                        self._go(self._fen, depth, self._multipv))
            elif line == "stop":
                if self.searching:
                    if self._answer is not None:
                        self._answer.cancel()
                    self.searching = 0
                    self.channel.emit(f"bestmove {first_legal(self._fen)}")

    async def _go(self, fen: str, depth: int, multipv: int) -> None:
        if self.delay is not None:
            await asyncio.sleep(self.delay(fen))
        for out in self.script(fen, depth, multipv):
            self.channel.emit(out)
        self.searching = 0
        self._answer = None

    def commands(self, prefix: str) -> List[str]:
        return [c for c in self.received if c.startswith(prefix)]


def _unavailable():
    raise OSError("engine binary not found")


@pytest.fixture
def engine_pair():
    """Async factory: (EngineClient, FakeEngine) connected through a QueueChannel."""
    async def build(timeout_ms: int = 2000, **fake_opts):
        channel = QueueChannel()
        fake = FakeEngine(channel, **fake_opts)
        fake.start()
        client = EngineClient(lambda: channel, timeout_ms=timeout_ms, handshake_timeout_ms=500,
                              fallback=FallbackSearch(1))
        await client.start()
        return client, fake
    return build


@pytest.fixture
def fallback_client():
    """Factory for a client whose engine never starts, so every query uses FallbackSearch."""
    def build(max_depth: int = 1) -> EngineClient:
        return EngineClient(_unavailable, timeout_ms=1000, fallback=FallbackSearch(max_depth))
    return build


class ManualClock:
    def __init__(self, start: int = 0):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()
