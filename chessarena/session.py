# Path: chessarena/session.py
"""
One game's state machine.

- Board via the rules adapter (python-chess), move history, last move
- Two-phase move selection: select_piece -> select_target -> select_piece
- Per-side clocks: elapsed time since the previous move is charged to the
  side that just moved, nothing else ever touches the clocks
- Assist flags: nerf (depth forced low, level label kept), auto-play
- Closed flag + event: the cancellation token for work scheduled on the session

Methods here never await; a move is either fully recorded or not at all.
"""
from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Union

import chess

from .errors import IllegalMove, NotAParticipant, NothingToUndo
from .models import MoveDTO, ParticipantDTO, SessionSnapshot
from .rules import RULES, Move, RulesAdapter, Status

DEFAULT_TIME_LIMIT_MS = 600_000
DEFAULT_NERF_DEPTH = 2


class Phase(str, Enum):
    SELECT_PIECE = "select_piece"
    SELECT_TARGET = "select_target"


@dataclass(frozen=True)
class EngineLevel:
    key: str
    depth: int
    label: str


ENGINE_LEVELS: Dict[str, EngineLevel] = {
    "novice": EngineLevel("novice", 4, "Novice"),
    "easy": EngineLevel("easy", 8, "Easy"),
    "medium": EngineLevel("medium", 10, "Medium"),
    "hard": EngineLevel("hard", 12, "Hard"),
    "master": EngineLevel("master", 15, "Master"),
}
DEFAULT_LEVEL = "medium"


@dataclass(frozen=True)
class Human:
    id: str
    name: str


@dataclass(frozen=True)
class EngineOpponent:
    level: EngineLevel = ENGINE_LEVELS[DEFAULT_LEVEL]

    @property
    def id(self) -> str:
        return f"engine/{self.level.key}"

    @property
    def name(self) -> str:
        return f"Engine ({self.level.label})"


Participant = Union[Human, EngineOpponent]


def is_engine(participant: Participant) -> bool:
    return isinstance(participant, EngineOpponent)


@dataclass(frozen=True)
class ClockSnapshot:
    white_ms: int
    black_ms: int


@dataclass(frozen=True)
class MoveRecord:
    move: Move
    color: chess.Color
    clocks_before: ClockSnapshot

    @property
    def san(self) -> str:
        return self.move.san

    @property
    def uci(self) -> str:
        return self.move.uci


def _monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


def format_ms(ms: int) -> str:
    ms = max(0, ms)
    return f"{ms // 60000}:{(ms % 60000) // 1000:02d}"


@dataclass(eq=False)
class GameSession:
    white: Participant
    black: Participant
    time_limit_ms: int = DEFAULT_TIME_LIMIT_MS
    depth: Optional[int] = None
    level_label: Optional[str] = None
    assisted: Optional[chess.Color] = None
    nerf_depth: int = DEFAULT_NERF_DEPTH
    fen: Optional[str] = None
    clock: Callable[[], int] = field(default=_monotonic_ms, repr=False)
    rules: RulesAdapter = field(default=RULES, repr=False)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    # presentation back-references, opaque here
    channel_id: Optional[str] = None
    message_id: Optional[str] = None

    def __post_init__(self) -> None:
        if is_engine(self.white) and is_engine(self.black):
            raise ValueError("engine-vs-engine sessions are not supported")
        engine = self.white if is_engine(self.white) else self.black if is_engine(self.black) else None
        if engine is not None:
            if self.depth is None:
                self.depth = engine.level.depth
            if self.level_label is None:
                self.level_label = engine.level.label
        if self.depth is None:
            self.depth = ENGINE_LEVELS[DEFAULT_LEVEL].depth
        self.true_depth: int = self.depth

        self.board: chess.Board = self.rules.new_board(self.fen)
        self.history: List[MoveRecord] = []
        self.last_move: Optional[Move] = None
        self.remaining: Dict[chess.Color, int] = {
            chess.WHITE: self.time_limit_ms,
            chess.BLACK: self.time_limit_ms,
        }
        self.created_at = time.time()
        self.last_move_at = self.clock()

        self.phase = Phase.SELECT_PIECE
        self.selected_square: Optional[str] = None
        self.nerfed = False
        self.auto_play = False
        self.resigned: Optional[chess.Color] = None
        self.version = 0

        self.closed = False
        self.closed_event = asyncio.Event()
        self.lock = asyncio.Lock()

    # ---------------- participants & turn ----------------
    @property
    def turn(self) -> chess.Color:
        return self.board.turn

    @property
    def side_to_move(self) -> Participant:
        return self.white if self.board.turn == chess.WHITE else self.black

    @property
    def engine_to_move(self) -> bool:
        return is_engine(self.side_to_move)

    @property
    def assisted_to_move(self) -> bool:
        return self.assisted is not None and self.board.turn == self.assisted

    @property
    def move_number(self) -> int:
        return len(self.history) // 2 + 1

    @property
    def humans(self) -> List[Human]:
        return [p for p in (self.white, self.black) if not is_engine(p)]

    def participant(self, color: chess.Color) -> Participant:
        return self.white if color == chess.WHITE else self.black

    def color_of(self, participant_id: str) -> Optional[chess.Color]:
        if not is_engine(self.white) and self.white.id == participant_id:
            return chess.WHITE
        if not is_engine(self.black) and self.black.id == participant_id:
            return chess.BLACK
        return None

    def to_fen(self) -> str:
        return self.rules.to_fen(self.board)

    # ---------------- selection ----------------
    def select_piece(self, square: str) -> List[str]:
        """Target squares for the piece on `square`; empty (and no state change) if it cannot move."""
        piece = self.rules.piece_at(self.board, square)
        if piece is None or piece.color != self.board.turn:
            return []
        moves = self.rules.legal_moves(self.board, square)
        if not moves:
            return []
        self.selected_square = square.lower()
        self.phase = Phase.SELECT_TARGET
        targets: List[str] = []
        for m in moves:
            name = chess.square_name(m.to_square)
            if name not in targets:
                targets.append(name)
        return targets

    def legal_targets(self, square: str) -> List[Move]:
        return [self.rules.describe(self.board, m) for m in self.rules.legal_moves(self.board, square)]

    def movable_pieces(self) -> List[str]:
        squares = {chess.square_name(m.from_square) for m in self.board.legal_moves}
        return sorted(squares, key=lambda s: (s[1], s[0]))

    def cancel_selection(self) -> None:
        self.selected_square = None
        self.phase = Phase.SELECT_PIECE

    # ---------------- moves ----------------
    def apply_move(self, from_sq: str, to_sq: str, promotion: Optional[str] = None) -> MoveRecord:
        self._check_playable()
        move = self.rules.resolve(self.board, from_sq, to_sq, promotion)
        return self._commit(move)

    def apply_compact(self, text: str) -> MoveRecord:
        """Coordinate form (e2e4, e7e8q) or SAN (Nf3, exd5, O-O)."""
        self._check_playable()
        move = self.rules.parse(self.board, text)
        return self._commit(move)

    def _check_playable(self) -> None:
        if self.closed or self.status().terminal:
            raise IllegalMove("game is over")

    def _commit(self, move: chess.Move) -> MoveRecord:
        now = self.clock()
        mover = self.board.turn
        before = ClockSnapshot(self.remaining[chess.WHITE], self.remaining[chess.BLACK])
        described = self.rules.push(self.board, move)
        self._charge_clock(mover, now)
        record = MoveRecord(move=described, color=mover, clocks_before=before)
        self.history.append(record)
        self.last_move = described
        self.cancel_selection()
        self.version += 1
        return record

    def _charge_clock(self, mover: chess.Color, now: int) -> None:
        """The side that just moved pays for the time since the previous move."""
        elapsed = max(0, now - self.last_move_at)
        self.remaining[mover] -= elapsed
        self.last_move_at = now

    def undo_last_pair(self) -> List[MoveRecord]:
        if len(self.history) < 2:
            raise NothingToUndo("need two moves to undo")
        undone = []
        for _ in range(2):
            self.board.pop()
            undone.append(self.history.pop())
        first = undone[-1]
        self.remaining[chess.WHITE] = first.clocks_before.white_ms
        self.remaining[chess.BLACK] = first.clocks_before.black_ms
        self.last_move_at = self.clock()
        self.last_move = self.history[-1].move if self.history else None
        self.cancel_selection()
        self.version += 1
        return list(reversed(undone))

    def resign(self, participant_id: str) -> str:
        color = self.color_of(participant_id)
        if color is None:
            raise NotAParticipant(participant_id)
        self.resigned = color
        self.version += 1
        loser, winner = self.participant(color), self.participant(not color)
        return f"{loser.name} resigned. {winner.name} wins!"

    # ---------------- status ----------------
    def status(self) -> Status:
        if self.resigned is not None:
            return Status.RESIGNED
        board_status = self.rules.status(self.board)
        if board_status.terminal:
            return board_status
        if self.remaining[chess.WHITE] <= 0:
            return Status.WHITE_TIMEOUT
        if self.remaining[chess.BLACK] <= 0:
            return Status.BLACK_TIMEOUT
        return board_status

    def is_over(self) -> bool:
        return self.status().terminal

    def winner(self) -> Optional[chess.Color]:
        """Winning colour for a decided game; None while playing or for draws."""
        status = self.status()
        if status == Status.RESIGNED:
            return not self.resigned
        if status == Status.CHECKMATE:
            return not self.board.turn
        if status == Status.WHITE_TIMEOUT:
            return chess.BLACK
        if status == Status.BLACK_TIMEOUT:
            return chess.WHITE
        return None

    # ---------------- assist ----------------
    def nerf(self) -> None:
        self.nerfed = True
        self.depth = self.nerf_depth

    def unnerf(self) -> None:
        self.nerfed = False
        self.depth = self.true_depth

    def toggle_auto_play(self) -> bool:
        self.auto_play = not self.auto_play
        return self.auto_play

    # ---------------- lifecycle ----------------
    def close(self) -> None:
        self.closed = True
        self.closed_event.set()

    # ---------------- views ----------------
    def move_text(self) -> str:
        parts = []
        for i in range(0, len(self.history), 2):
            pair = f"{i // 2 + 1}. {self.history[i].san}"
            if i + 1 < len(self.history):
                pair += f" {self.history[i + 1].san}"
            parts.append(pair)
        return " ".join(parts)

    def clock_text(self) -> Dict[str, str]:
        return {"white": format_ms(self.remaining[chess.WHITE]),
                "black": format_ms(self.remaining[chess.BLACK])}

    def snapshot(self) -> SessionSnapshot:
        status = self.status()
        last = None
        if self.last_move is not None:
            last = MoveDTO.from_move(self.last_move)
        return SessionSnapshot(
            sessionId=self.id,
            fen=self.to_fen(),
            turn="w" if self.board.turn == chess.WHITE else "b",
            phase=self.phase.value,
            selectedSquare=self.selected_square,
            white=ParticipantDTO(id=self.white.id, name=self.white.name, engine=is_engine(self.white)),
            black=ParticipantDTO(id=self.black.id, name=self.black.name, engine=is_engine(self.black)),
            whiteMs=self.remaining[chess.WHITE],
            blackMs=self.remaining[chess.BLACK],
            clock=self.clock_text(),
            lastMove=last,
            status=status.value,
            over=status.terminal,
            moveNumber=self.move_number,
            history=[r.san for r in self.history],
            levelLabel=self.level_label,
        )
