# Path: chessarena/models.py
"""
Pydantic models for API contracts between the presentation layer and the arena.
"""
from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PlayerRef(BaseModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)


class NewSessionRequest(BaseModel):
    white: PlayerRef
    black: Optional[PlayerRef] = Field(None, description="Omit to play against the engine")
    level: Optional[str] = Field(None, description="Engine level key when black is omitted")
    timeLimitMs: Optional[int] = Field(None, ge=1000)
    channelId: Optional[str] = None

    model_config = {"extra": "forbid"}


class SelectRequest(BaseModel):
    square: str = Field(..., min_length=2, max_length=2)
    playerId: str


class MoveRequest(BaseModel):
    # Either {from, to, promotion?} or {notation}
    from_square: Optional[str] = Field(None, min_length=2, max_length=2, alias='from')
    to_square: Optional[str] = Field(None, min_length=2, max_length=2, alias='to')
    promotion: Optional[str] = Field(None, min_length=1, max_length=1, description="q, r, b or n")
    notation: Optional[str] = Field(None, min_length=2, max_length=10, description="e2e4 or SAN")
    playerId: str

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def _one_form(self) -> "MoveRequest":
        coords = self.from_square is not None and self.to_square is not None
        if coords == (self.notation is not None):
            raise ValueError("give either from/to or notation")
        return self


class PlayerRequest(BaseModel):
    playerId: str


class ParticipantDTO(BaseModel):
    id: str
    name: str
    engine: bool = False


class MoveDTO(BaseModel):
    from_square: str = Field(..., alias='from')
    to_square: str = Field(..., alias='to')
    promotion: Optional[str] = None
    san: str
    uci: str
    captured: bool = False

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_move(cls, m) -> "MoveDTO":
        return cls(from_square=m.from_square, to_square=m.to_square, promotion=m.promotion,
                   san=m.san, uci=m.uci, captured=m.captured)


class SessionSnapshot(BaseModel):
    """Read-only projection of a session for rendering."""
    sessionId: str
    fen: str
    turn: Literal['w', 'b']
    phase: Literal['select_piece', 'select_target']
    selectedSquare: Optional[str] = None
    white: ParticipantDTO
    black: ParticipantDTO
    whiteMs: int
    blackMs: int
    clock: Dict[str, str] = Field(default_factory=dict)
    lastMove: Optional[MoveDTO] = None
    status: str
    over: bool
    moveNumber: int
    history: List[str] = Field(default_factory=list)
    levelLabel: Optional[str] = None


class TargetDTO(BaseModel):
    to: str
    san: str
    captured: bool = False
    promotion: Optional[str] = None


class SelectResponse(BaseModel):
    square: str
    targets: List[TargetDTO] = Field(default_factory=list)
    phase: Literal['select_piece', 'select_target']


class MoveResponse(BaseModel):
    move: MoveDTO
    state: SessionSnapshot


class ResignResponse(BaseModel):
    message: str
    state: SessionSnapshot


class StatsDTO(BaseModel):
    wins: int = 0
    losses: int = 0
    draws: int = 0
    games: int = 0
    winRate: float = 0.0
