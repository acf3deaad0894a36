"""Engine query and result shapes shared by the engine client and fallback search."""
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

QueryKind = Literal["best_move", "analyze", "top_moves"]
Provenance = Literal["engine", "fallback"]


class EngineQuery(BaseModel):
    kind: QueryKind
    fen: str = Field(..., description="Position to search, as FEN")
    depth: int = Field(12, ge=1, le=40)
    count: int = Field(1, ge=1, le=10, description="MultiPV lines for top_moves")

    model_config = {"extra": "forbid"}


class BestMove(BaseModel):
    move: str
    ponder: Optional[str] = None
    provenance: Provenance = "engine"


class InfoLine(BaseModel):
    depth: int
    score: Optional[float] = None  # pawns, side to move
    mate: Optional[int] = None
    moves: List[str] = Field(default_factory=list)


class Analysis(BaseModel):
    best_move: Optional[str] = None
    score: Optional[float] = None
    mate: Optional[int] = None
    lines: List[InfoLine] = Field(default_factory=list)
    provenance: Provenance = "engine"
    complete: bool = True


class RankedMove(BaseModel):
    rank: int
    move: str
    score: Optional[float] = None
    mate: Optional[int] = None
    line: str = ""


class TopMoves(BaseModel):
    moves: List[RankedMove] = Field(default_factory=list)
    provenance: Provenance = "engine"
    complete: bool = True

    def __len__(self) -> int:
        return len(self.moves)
