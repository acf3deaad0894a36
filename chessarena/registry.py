# Path: chessarena/registry.py
"""
Process-wide table of live sessions.

- session id -> session, human participant id -> session id
- A human is in at most one live session; engine participants are never indexed
- Termination (stats once, then destroy) happens here, exactly once per session

Created at startup, cleared at shutdown, and handed to whatever needs it.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import chess

from .errors import AlreadyInSession
from .session import DEFAULT_TIME_LIMIT_MS, GameSession, Participant, is_engine

log = logging.getLogger(__name__)


@dataclass
class PlayerStats:
    wins: int = 0
    losses: int = 0
    draws: int = 0
    games: int = 0

    @property
    def win_rate(self) -> float:
        return round(100 * self.wins / self.games, 1) if self.games else 0.0


class StatsLedger:
    """In-memory win/loss/draw counts for human players."""

    def __init__(self) -> None:
        self._stats: Dict[str, PlayerStats] = {}
        self._lock = threading.Lock()

    def get(self, player_id: str) -> PlayerStats:
        with self._lock:
            s = self._stats.get(player_id)
            return PlayerStats(s.wins, s.losses, s.draws, s.games) if s else PlayerStats()

    def record(self, session: GameSession) -> None:
        winner = session.winner()
        with self._lock:
            for color in (chess.WHITE, chess.BLACK):
                p = session.participant(color)
                if is_engine(p):
                    continue
                s = self._stats.setdefault(p.id, PlayerStats())
                s.games += 1
                if winner is None:
                    s.draws += 1
                elif winner == color:
                    s.wins += 1
                else:
                    s.losses += 1

    def clear(self) -> None:
        with self._lock:
            self._stats.clear()


class SessionRegistry:
    def __init__(self, time_limit_ms: int = DEFAULT_TIME_LIMIT_MS, nerf_depth: Optional[int] = None,
                 stats: Optional[StatsLedger] = None, clock: Optional[Callable[[], int]] = None):
        self.time_limit_ms = time_limit_ms
        self.nerf_depth = nerf_depth
        self.stats = stats or StatsLedger()
        self._clock = clock
        self._sessions: Dict[str, GameSession] = {}
        self._players: Dict[str, str] = {}
        self._lock = threading.RLock()

    @classmethod
    def from_settings(cls, settings, stats: Optional[StatsLedger] = None) -> "SessionRegistry":
        return cls(time_limit_ms=settings.time_limit_ms, nerf_depth=settings.nerf_depth, stats=stats)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    @property
    def players_online(self) -> int:
        with self._lock:
            return len(self._players)

    def create(self, white: Participant, black: Participant, time_limit_ms: Optional[int] = None,
               assisted: Optional[chess.Color] = None, **kwargs) -> GameSession:
        opts = dict(kwargs)
        if self.nerf_depth is not None:
            opts.setdefault("nerf_depth", self.nerf_depth)
        if self._clock is not None:
            opts.setdefault("clock", self._clock)
        session = GameSession(white=white, black=black,
                              time_limit_ms=time_limit_ms or self.time_limit_ms,
                              assisted=assisted, **opts)
        human_ids = [p.id for p in session.humans]
        if len(set(human_ids)) != len(human_ids):
            raise ValueError("a player cannot play against themselves")
        with self._lock:
            for pid in human_ids:
                if pid in self._players:
                    raise AlreadyInSession(pid)
            self._sessions[session.id] = session
            for pid in human_ids:
                self._players[pid] = session.id
        log.info("session %s created: %s vs %s", session.id, white.name, black.name)
        return session

    def get(self, session_id: str) -> Optional[GameSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def find(self, participant_id: str) -> Optional[GameSession]:
        with self._lock:
            sid = self._players.get(participant_id)
            return self._sessions.get(sid) if sid else None

    def is_live(self, session: GameSession) -> bool:
        with self._lock:
            return self._sessions.get(session.id) is session

    def destroy(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is None:
                return False
            for p in session.humans:
                if self._players.get(p.id) == session_id:
                    del self._players[p.id]
        session.close()
        log.info("session %s destroyed", session_id)
        return True

    def end(self, session_id: str) -> bool:
        """Record the result and destroy the session; a no-op once it is gone."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            self.stats.record(session)
            return self.destroy(session_id)

    def sessions(self) -> List[GameSession]:
        with self._lock:
            return list(self._sessions.values())

    def clear(self) -> None:
        with self._lock:
            ids = list(self._sessions)
        for sid in ids:
            self.destroy(sid)
