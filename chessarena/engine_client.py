# Path: chessarena/engine_client.py
"""
Purpose: Single shared UCI engine process, queried by many game sessions.

- Requests are queued FIFO and served by one worker task; only the request at
  the head of the queue owns a line handler, so answers can never be routed
  to the wrong caller.
- Every query starts with `ucinewgame` + `isready`; lines that arrive before
  `readyok` belong to an earlier, abandoned search and are discarded.
- A query that outlives its deadline sends `stop` and yields "no result"
  (best_move) or a partial result (analyze/top_moves).
- If the engine cannot be started, or dies, every query is answered by the
  local FallbackSearch instead, tagged with provenance "fallback".
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Union

import chess

from .channel import LineChannel, SubprocessChannel
from .errors import EngineTimeout, EngineUnavailable
from .schemas import Analysis, BestMove, EngineQuery, InfoLine, RankedMove, TopMoves
from .search import FallbackSearch, mate_in
from .uci_parser import parse_bestmove_line, parse_info_line

log = logging.getLogger(__name__)

Result = Union[Optional[BestMove], Analysis, TopMoves]
ChannelFactory = Callable[[], LineChannel]

ABORT_DRAIN_S = 0.8
PV_PREVIEW = 5


def _score_fields(info: Dict):
    """(pawns, mate) from a parsed info dict; centipawns become pawn units."""
    score = info.get("score") or {}
    if "cp" in score:
        return score["cp"] / 100, None
    if "mate" in score:
        return None, score["mate"]
    return None, None


# ---------------- per-request line handlers ----------------

class _Handler:
    def __init__(self, query: EngineQuery):
        self.query = query

    def feed(self, line: str) -> bool:
        """Consume one engine line; True once the terminating line is seen."""
        raise NotImplementedError

    def result(self, complete: bool) -> Result:
        raise NotImplementedError


class _BestMoveHandler(_Handler):
    def __init__(self, query: EngineQuery):
        super().__init__(query)
        self.best: Optional[Dict] = None

    def feed(self, line: str) -> bool:
        if line.startswith("bestmove"):
            self.best = parse_bestmove_line(line)
            return True
        return False

    def result(self, complete: bool) -> Optional[BestMove]:
        if not complete or not self.best or self.best["move"] in ("(none)", "0000"):
            return None
        return BestMove(move=self.best["move"], ponder=self.best["ponder"])


class _AnalysisHandler(_Handler):
    def __init__(self, query: EngineQuery):
        super().__init__(query)
        self.lines: List[InfoLine] = []
        self.best_move: Optional[str] = None

    def feed(self, line: str) -> bool:
        if line.startswith("info "):
            info = parse_info_line(line)
            if "depth" not in info or info.get("multipv", 1) != 1:
                return False
            if "score" not in info and "pv" not in info:
                return False
            score, mate = _score_fields(info)
            self.lines.append(InfoLine(depth=info["depth"], score=score, mate=mate,
                                       moves=info.get("pv", [])))
        elif line.startswith("bestmove"):
            parsed = parse_bestmove_line(line)
            if parsed and parsed["move"] not in ("(none)", "0000"):
                self.best_move = parsed["move"]
            return True
        return False

    def result(self, complete: bool) -> Analysis:
        analysis = Analysis(lines=list(self.lines), complete=complete)
        if complete:
            analysis.best_move = self.best_move
        scored = [ln for ln in self.lines if ln.score is not None or ln.mate is not None]
        if scored:
            analysis.score = scored[-1].score
            analysis.mate = scored[-1].mate
        return analysis


class _TopMovesHandler(_Handler):
    def __init__(self, query: EngineQuery):
        super().__init__(query)
        self.ranked: Dict[int, RankedMove] = {}

    def feed(self, line: str) -> bool:
        if line.startswith("info "):
            info = parse_info_line(line)
            pv = info.get("pv")
            if "depth" not in info or not pv:
                return False
            rank = info.get("multipv", 1)
            if rank < 1 or rank > self.query.count:
                return False
            score, mate = _score_fields(info)
            # deeper lines for the same rank replace shallower ones
            self.ranked[rank] = RankedMove(rank=rank, move=pv[0], score=score, mate=mate,
                                           line=" ".join(pv[:PV_PREVIEW]))
        elif line.startswith("bestmove"):
            return True
        return False

    def result(self, complete: bool) -> TopMoves:
        moves = [self.ranked[k] for k in sorted(self.ranked)]
        return TopMoves(moves=moves, complete=complete)


_HANDLERS = {
    "best_move": _BestMoveHandler,
    "analyze": _AnalysisHandler,
    "top_moves": _TopMovesHandler,
}


class _Request:
    __slots__ = ("query", "future")

    def __init__(self, query: EngineQuery, future: asyncio.Future):
        self.query = query
        self.future = future


class EngineClient:
    def __init__(
        self,
        channel_factory: Optional[ChannelFactory] = None,
        *,
        cmd: str = "stockfish",
        timeout_ms: int = 15000,
        handshake_timeout_ms: int = 3000,
        threads: int = 1,
        hash_mb: int = 16,
        fallback: Optional[FallbackSearch] = None,
    ):
        self._factory = channel_factory or (lambda: SubprocessChannel(cmd))
        self.timeout = timeout_ms / 1000
        self.handshake_timeout = handshake_timeout_ms / 1000
        self.threads = threads
        self.hash_mb = hash_mb
        self.fallback = fallback or FallbackSearch()

        self._channel: Optional[LineChannel] = None
        self._available = False
        self._started = False
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        # set when a timed-out search may still be streaming lines
        self._dirty = False
        # MultiPV left above 1; reset once the engine is idle again
        self._multipv_raised = False

    @classmethod
    def from_settings(cls, settings, channel_factory: Optional[ChannelFactory] = None) -> "EngineClient":
        return cls(
            channel_factory,
            cmd=settings.engine_cmd,
            timeout_ms=settings.engine_timeout_ms,
            handshake_timeout_ms=settings.handshake_timeout_ms,
            threads=settings.engine_threads,
            hash_mb=settings.engine_hash_mb,
            fallback=FallbackSearch(settings.fallback_max_depth),
        )

    @property
    def available(self) -> bool:
        return self._available

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue else 0

    # ---------------- lifecycle ----------------
    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._queue = asyncio.Queue()
        try:
            self._channel = self._factory()
            await self._channel.open()
            await self._handshake()
            self._available = True
            log.info("engine ready")
        except (OSError, EngineUnavailable) as e:
            log.warning("engine unavailable (%s); falling back to local search", e)
            await self._discard_channel()
        self._worker = asyncio.create_task(self._serve(), name="engine-client-worker")

    async def _handshake(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.handshake_timeout
        await self._send("uci")
        await self._send(f"setoption name Threads value {self.threads}")
        await self._send(f"setoption name Hash value {self.hash_mb}")
        await self._send("isready")
        if not await self._sync(deadline):
            raise EngineUnavailable("uci handshake timed out")

    async def close(self) -> None:
        if self._worker:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        if self._queue:
            while not self._queue.empty():
                req = self._queue.get_nowait()
                if not req.future.done():
                    req.future.cancel()
        await self._discard_channel()
        self._started = False

    async def _discard_channel(self) -> None:
        self._available = False
        self._multipv_raised = False
        channel, self._channel = self._channel, None
        if channel is not None:
            try:
                await channel.close()
            except OSError as e:
                log.debug("closing engine channel failed: %s", e)

    # ---------------- public ops ----------------
    async def best_move(self, fen: str, depth: int = 12) -> Optional[BestMove]:
        return await self.submit(EngineQuery(kind="best_move", fen=fen, depth=depth))

    async def analyze(self, fen: str, depth: int = 15) -> Analysis:
        return await self.submit(EngineQuery(kind="analyze", fen=fen, depth=depth))

    async def top_moves(self, fen: str, depth: int = 12, n: int = 3) -> TopMoves:
        return await self.submit(EngineQuery(kind="top_moves", fen=fen, depth=depth, count=n))

    async def submit(self, query: EngineQuery) -> Result:
        if not self._started:
            await self.start()
        future = asyncio.get_running_loop().create_future()
        await self._queue.put(_Request(query, future))
        return await future

    # ---------------- worker ----------------
    async def _serve(self) -> None:
        while True:
            req = await self._queue.get()
            if req.future.done():
                # caller gave up before the query was sent
                continue
            try:
                result = await self._execute(req.query)
            except asyncio.CancelledError:
                if not req.future.done():
                    req.future.cancel()
                raise
            except Exception as e:
                log.exception("engine query failed: %s depth %d", req.query.kind, req.query.depth)
                if not req.future.done():
                    req.future.set_exception(e)
                continue
            if not req.future.done():
                req.future.set_result(result)
            if self._dirty:
                await self._settle()

    async def _execute(self, query: EngineQuery) -> Result:
        if self._available:
            try:
                return await self._run_engine(query)
            except EngineTimeout as e:
                log.warning("%s", e)
                self._dirty = True
                return e.partial
            except EngineUnavailable as e:
                log.warning("engine lost (%s); falling back to local search", e)
                await self._discard_channel()
        return await self._run_fallback(query)

    async def _run_engine(self, query: EngineQuery) -> Result:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        handler = _HANDLERS[query.kind](query)

        await self._send("ucinewgame")
        await self._send("isready")
        if not await self._sync(deadline):
            raise EngineTimeout(f"engine never acknowledged isready; {query.kind} timed out",
                                handler.result(complete=False))

        if query.kind == "top_moves":
            await self._send(f"setoption name MultiPV value {query.count}")
            self._multipv_raised = True
        await self._send(f"position fen {query.fen}")
        await self._send(f"go depth {query.depth}")
        while True:
            line = await self._read(deadline)
            if line is None:
                # still searching; MultiPV is reset after `stop` in _settle
                raise EngineTimeout(f"{query.kind} depth {query.depth} timed out after {self.timeout:.1f}s",
                                    handler.result(complete=False))
            if handler.feed(line):
                break
        await self._reset_multipv()
        return handler.result(complete=True)

    async def _run_fallback(self, query: EngineQuery) -> Result:
        board = chess.Board(query.fen)
        count = query.count if query.kind == "top_moves" else 1
        depth = self.fallback.clamp_depth(query.depth)
        lines = await asyncio.to_thread(self.fallback.rank_moves, board, depth, count)
        log.debug("fallback %s depth %d -> %d line(s)", query.kind, depth, len(lines))

        def pawns_and_mate(cp: int):
            mate = mate_in(cp)
            return (None, mate) if mate is not None else (cp / 100, None)

        if query.kind == "top_moves":
            ranked = []
            for i, (move, cp, pv) in enumerate(lines):
                score, mate = pawns_and_mate(cp)
                ranked.append(RankedMove(rank=i + 1, move=move.uci(), score=score, mate=mate,
                                         line=" ".join(m.uci() for m in pv[:PV_PREVIEW])))
            return TopMoves(moves=ranked, provenance="fallback")

        if not lines:
            if query.kind == "best_move":
                return None
            return Analysis(provenance="fallback")

        move, cp, pv = lines[0]
        if query.kind == "best_move":
            ponder = pv[1].uci() if len(pv) > 1 else None
            return BestMove(move=move.uci(), ponder=ponder, provenance="fallback")

        score, mate = pawns_and_mate(cp)
        info = InfoLine(depth=depth, score=score, mate=mate, moves=[m.uci() for m in pv])
        return Analysis(best_move=move.uci(), score=score, mate=mate, lines=[info],
                        provenance="fallback")

    # ---------------- i/o helpers ----------------
    async def _send(self, line: str) -> None:
        if self._channel is None:
            raise EngineUnavailable("no engine channel")
        try:
            await self._channel.send(line)
        except OSError as e:
            raise EngineUnavailable(f"send failed: {e}") from e

    async def _read(self, deadline: float) -> Optional[str]:
        """Next line, or None once the deadline passes. EOF raises EngineUnavailable."""
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            return None
        line = await self._channel.readline(remaining)
        if line == "":
            raise EngineUnavailable("engine closed its output")
        return line

    async def _sync(self, deadline: float) -> bool:
        while True:
            line = await self._read(deadline)
            if line is None:
                return False
            if line == "readyok":
                return True
            log.debug("discarding stale line: %s", line)

    async def _reset_multipv(self) -> None:
        """Back to one line; only sent while the engine is idle."""
        if self._multipv_raised:
            self._multipv_raised = False
            await self._send("setoption name MultiPV value 1")

    async def _abort(self) -> None:
        """Send `stop` and drain briefly until the abandoned search reports `bestmove`."""
        await self._send("stop")
        deadline = asyncio.get_running_loop().time() + ABORT_DRAIN_S
        while True:
            line = await self._read(deadline)
            if line is None or line.startswith("bestmove"):
                return

    async def _settle(self) -> None:
        """Clean up after a timed-out search once its caller already has an answer."""
        self._dirty = False
        try:
            await self._abort()
            await self._reset_multipv()
        except EngineUnavailable as e:
            log.warning("engine lost while aborting (%s); falling back to local search", e)
            await self._discard_channel()
