# Path: chessarena/assist.py
"""
Owner-only assistance: hints, evaluation, nerfing the engine opponent,
auto-play and undo. Only the configured owner id may use any of it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from .autoplay import AutoPlayOrchestrator
from .engine_client import EngineClient
from .errors import NotAParticipant, NotPermitted
from .schemas import Analysis, TopMoves
from .session import GameSession, MoveRecord

log = logging.getLogger(__name__)

ASSIST_DEPTH = 15
HINT_COUNT = 3

# (lower bound in pawns, label), checked top to bottom
ADVANTAGE_BANDS = [
    (3.0, "winning"),
    (1.0, "better"),
    (0.3, "slightly_better"),
    (-0.3, "equal"),
    (-1.0, "slightly_worse"),
    (-3.0, "worse"),
]


def advantage(score: Optional[float], mate: Optional[int]) -> str:
    if mate is not None:
        return "winning" if mate > 0 else "losing"
    score = score or 0.0
    for bound, label in ADVANTAGE_BANDS:
        if score > bound:
            return label
    return "losing"


@dataclass
class Evaluation:
    analysis: Analysis
    advantage: str


class AssistService:
    def __init__(self, engine: EngineClient, autoplay: AutoPlayOrchestrator,
                 owner_id: Optional[str] = None, depth: int = ASSIST_DEPTH):
        self.engine = engine
        self.autoplay = autoplay
        self.owner_id = owner_id
        self.depth = depth

    def is_owner(self, player_id: str) -> bool:
        return self.owner_id is not None and player_id == self.owner_id

    def _authorize(self, session: GameSession, player_id: str) -> None:
        if not self.is_owner(player_id):
            raise NotPermitted("assist is reserved for the owner")
        if session.color_of(player_id) is None:
            raise NotAParticipant(player_id)

    async def hint(self, session: GameSession, player_id: str) -> TopMoves:
        self._authorize(session, player_id)
        return await self.engine.top_moves(session.to_fen(), self.depth, HINT_COUNT)

    async def evaluate(self, session: GameSession, player_id: str) -> Evaluation:
        self._authorize(session, player_id)
        analysis = await self.engine.analyze(session.to_fen(), self.depth)
        return Evaluation(analysis=analysis, advantage=advantage(analysis.score, analysis.mate))

    def toggle_nerf(self, session: GameSession, player_id: str) -> bool:
        self._authorize(session, player_id)
        if session.nerfed:
            session.unnerf()
        else:
            session.nerf()
        log.info("session %s: engine depth now %d (nerfed=%s)", session.id, session.depth, session.nerfed)
        return session.nerfed

    def toggle_auto_play(self, session: GameSession, player_id: str) -> bool:
        self._authorize(session, player_id)
        session.assisted = session.color_of(player_id)
        enabled = session.toggle_auto_play()
        if enabled:
            if session.assisted_to_move and not session.is_over():
                self.autoplay.schedule(session)
        else:
            self.autoplay.cancel(session.id)
        return enabled

    async def undo(self, session: GameSession, player_id: str) -> List[MoveRecord]:
        self._authorize(session, player_id)
        async with session.lock:
            undone = session.undo_last_pair()
        log.info("session %s: owner took back %s", session.id, " ".join(r.san for r in undone))
        # whoever is to move now gets their turn again (engine reply or auto-play)
        await self.autoplay.after_move(session)
        return undone

    async def autorun(self, session: GameSession, player_id: str) -> Optional[MoveRecord]:
        """Play the owner's move now at auto-play depth; the engine replies if it is next."""
        self._authorize(session, player_id)
        color = session.color_of(player_id)
        if color != session.turn:
            raise NotPermitted("not your turn")
        if session.is_over():
            raise NotPermitted("game is over")
        return await self.autoplay.play_now(session, color)
