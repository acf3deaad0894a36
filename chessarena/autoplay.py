# Path: chessarena/autoplay.py
"""
Purpose: Engine-driven moves on live sessions.

- Engine replies when the side to move is an EngineOpponent (no delay).
- Assisted auto-play: after a random 3-8 s pause, a deep best_move on behalf
  of the assisted player.
- Every engine answer is checked again under the session lock before it is
  applied: the session must still be live, the position unchanged, and the
  right side (and auto-play flag) still in place. Anything else is stale and
  is dropped.
"""
from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Dict, Optional, Tuple

import chess

from .engine_client import EngineClient
from .errors import IllegalMove, StaleResult
from .registry import SessionRegistry
from .session import GameSession, MoveRecord

log = logging.getLogger(__name__)

MoveListener = Callable[[GameSession, MoveRecord, str], Awaitable[None]]
Expectation = Callable[[GameSession], bool]


def _engine_turn(session: GameSession) -> bool:
    return session.engine_to_move


def _assisted_turn(session: GameSession) -> bool:
    return session.auto_play and session.assisted_to_move


class AutoPlayOrchestrator:
    def __init__(
        self,
        registry: SessionRegistry,
        engine: EngineClient,
        *,
        autoplay_depth: int = 15,
        delay_ms: Tuple[int, int] = (3000, 8000),
        retries: int = 1,
        rng: Optional[random.Random] = None,
        on_move: Optional[MoveListener] = None,
    ):
        self.registry = registry
        self.engine = engine
        self.autoplay_depth = autoplay_depth
        self.delay_ms = delay_ms
        self.retries = retries
        self.rng = rng or random.Random()
        self.on_move = on_move
        self._tasks: Dict[str, asyncio.Task] = {}

    @classmethod
    def from_settings(cls, settings, registry: SessionRegistry, engine: EngineClient,
                      **kwargs) -> "AutoPlayOrchestrator":
        return cls(
            registry,
            engine,
            autoplay_depth=settings.autoplay_depth,
            delay_ms=(settings.autoplay_min_delay_ms, settings.autoplay_max_delay_ms),
            retries=settings.engine_retries,
            **kwargs,
        )

    def pending(self, session_id: str) -> Optional[asyncio.Task]:
        task = self._tasks.get(session_id)
        return task if task is not None and not task.done() else None

    # ---------------- entry points ----------------
    async def after_move(self, session: GameSession) -> None:
        """Called once a human move or an undo was applied: finish the game or hand the turn on."""
        if self.finish_if_over(session):
            return
        if session.engine_to_move:
            await self.play_engine_turn(session)
        elif _assisted_turn(session):
            self.schedule(session)

    def finish_if_over(self, session: GameSession) -> bool:
        if not session.is_over():
            return False
        self.cancel(session.id)
        if self.registry.end(session.id):
            log.info("session %s finished: %s", session.id, session.status().value)
        return True

    async def play_engine_turn(self, session: GameSession) -> Optional[MoveRecord]:
        for attempt in range(1 + self.retries):
            fen = session.to_fen()
            result = await self.engine.best_move(fen, session.depth)
            if result is None:
                log.warning("no engine move for session %s (attempt %d)", session.id, attempt + 1)
                continue
            record = await self._commit(session, fen, result.move, _engine_turn)
            if record is None:
                return None
            await self._notify(session, record, "engine")
            if not self.finish_if_over(session) and _assisted_turn(session):
                self.schedule(session)
            return record
        log.warning("engine could not move in session %s; turn stalls", session.id)
        return None

    def schedule(self, session: GameSession) -> asyncio.Task:
        """One pending auto-play move per session."""
        existing = self.pending(session.id)
        if existing is not None:
            return existing
        task = asyncio.create_task(self._auto_move(session), name=f"autoplay-{session.id}")
        self._tasks[session.id] = task
        task.add_done_callback(lambda t, sid=session.id: self._forget(sid, t))
        return task

    def cancel(self, session_id: str) -> bool:
        task = self._tasks.pop(session_id, None)
        if task is None or task.done():
            return False
        if task is asyncio.current_task():
            return False
        task.cancel()
        return True

    async def shutdown(self) -> None:
        tasks = [t for t in self._tasks.values() if not t.done()]
        self._tasks.clear()
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # ---------------- auto-play task ----------------
    async def _auto_move(self, session: GameSession) -> None:
        fen = session.to_fen()
        lo, hi = self.delay_ms
        delay = self.rng.uniform(lo, hi) / 1000
        log.debug("auto-play for session %s in %.1fs", session.id, delay)
        try:
            await asyncio.wait_for(session.closed_event.wait(), timeout=delay)
            log.debug("session %s closed before auto-play fired", session.id)
            return
        except asyncio.TimeoutError:
            pass

        try:
            self._revalidate(session, fen, _assisted_turn)
        except StaleResult as e:
            log.info("auto-play for session %s skipped: %s", session.id, e)
            self._reschedule_if_moved(session, fen)
            return

        record = await self._play_for(session, fen, _assisted_turn, "auto")
        if record is None:
            self._reschedule_if_moved(session, fen)

    async def play_now(self, session: GameSession, color: chess.Color) -> Optional[MoveRecord]:
        """Immediate deep move for `color`, then the engine reply if one is due."""
        fen = session.to_fen()
        return await self._play_for(session, fen, lambda s: s.turn == color, "auto")

    async def _play_for(self, session: GameSession, fen: str, expect: Expectation,
                        source: str) -> Optional[MoveRecord]:
        result = await self.engine.best_move(fen, self.autoplay_depth)
        if result is None:
            log.warning("%s move for session %s got no engine move", source, session.id)
            return None
        record = await self._commit(session, fen, result.move, expect)
        if record is None:
            return None
        # this task is done deciding; let the next turn schedule a fresh one
        if self._tasks.get(session.id) is asyncio.current_task():
            del self._tasks[session.id]
        await self._notify(session, record, source)
        if not self.finish_if_over(session) and session.engine_to_move:
            await self.play_engine_turn(session)
        return record

    def _reschedule_if_moved(self, session: GameSession, fen: str) -> None:
        """The position changed under a pending auto move; try again if it is still due."""
        if session.to_fen() == fen:
            return
        if self._tasks.get(session.id) is asyncio.current_task():
            del self._tasks[session.id]
        if session.closed or not self.registry.is_live(session) or session.is_over():
            return
        if _assisted_turn(session):
            self.schedule(session)

    # ---------------- helpers ----------------
    def _revalidate(self, session: GameSession, fen: str, expect: Expectation) -> None:
        if session.closed or not self.registry.is_live(session):
            raise StaleResult("session ended")
        if session.to_fen() != fen:
            raise StaleResult("position changed")
        if not expect(session):
            raise StaleResult("turn or auto-play state changed")

    async def _commit(self, session: GameSession, fen: str, uci: str,
                      expect: Expectation) -> Optional[MoveRecord]:
        async with session.lock:
            try:
                self._revalidate(session, fen, expect)
            except StaleResult as e:
                log.info("dropping engine move %s for session %s: %s", uci, session.id, e)
                return None
            try:
                return session.apply_compact(uci)
            except IllegalMove:
                log.warning("engine move %s rejected in session %s", uci, session.id)
                return None

    async def _notify(self, session: GameSession, record: MoveRecord, source: str) -> None:
        log.info("session %s: %s played %s", session.id, source, record.san)
        if self.on_move is not None:
            await self.on_move(session, record, source)

    def _forget(self, session_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(session_id) is task:
            del self._tasks[session_id]
        if not task.cancelled() and task.exception() is not None:
            log.error("auto-play task for session %s failed", session_id, exc_info=task.exception())
