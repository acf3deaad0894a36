# Path: chessarena/rules.py
"""
Rules adapter over python-chess.

- Legal move listing (whole board or from one square)
- Move application with legality checks (coordinate or SAN input)
- Board-only terminal status (mate/stalemate/draw rules/repetition/material)
- FEN export/import
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

import chess

from .errors import IllegalMove

PROMO_MAP = {"q": chess.QUEEN, "r": chess.ROOK, "b": chess.BISHOP, "n": chess.KNIGHT}
COORD_RE = re.compile(r"^([a-h][1-8])([a-h][1-8])([qrbn])?$")


class Status(str, Enum):
    CHECKMATE = "checkmate"
    STALEMATE = "stalemate"
    DRAW = "draw"
    REPETITION = "repetition"
    INSUFFICIENT = "insufficient"
    WHITE_TIMEOUT = "white_timeout"
    BLACK_TIMEOUT = "black_timeout"
    RESIGNED = "resigned"
    CHECK = "check"
    ONGOING = "ongoing"

    @property
    def terminal(self) -> bool:
        return self not in (Status.CHECK, Status.ONGOING)


@dataclass(frozen=True)
class Move:
    from_square: str
    to_square: str
    promotion: Optional[str]
    san: str
    uci: str
    captured: bool


class RulesAdapter:
    """Stateless; every call takes the board it works on."""

    def new_board(self, fen: Optional[str] = None) -> chess.Board:
        return self.from_fen(fen) if fen else chess.Board()

    def from_fen(self, fen: str) -> chess.Board:
        try:
            return chess.Board(fen)
        except ValueError as e:
            raise ValueError(f"invalid FEN: {fen}") from e

    def to_fen(self, board: chess.Board) -> str:
        return board.fen()

    def legal_moves(self, board: chess.Board, square: Optional[str] = None) -> List[chess.Move]:
        if square is None:
            return list(board.legal_moves)
        try:
            sq = chess.parse_square(square.lower())
        except ValueError:
            return []
        return [m for m in board.legal_moves if m.from_square == sq]

    def piece_at(self, board: chess.Board, square: str) -> Optional[chess.Piece]:
        try:
            return board.piece_at(chess.parse_square(square.lower()))
        except ValueError:
            return None

    def describe(self, board: chess.Board, move: chess.Move) -> Move:
        """Notation for a legal move on `board`, computed before it is pushed."""
        promo = chess.piece_symbol(move.promotion) if move.promotion else None
        return Move(
            from_square=chess.square_name(move.from_square),
            to_square=chess.square_name(move.to_square),
            promotion=promo,
            san=board.san(move),
            uci=move.uci(),
            captured=board.is_capture(move),
        )

    def resolve(self, board: chess.Board, from_sq: str, to_sq: str,
                promotion: Optional[str] = None) -> chess.Move:
        if promotion:
            p = promotion.lower()
            if p not in PROMO_MAP:
                raise IllegalMove(f"invalid promotion piece: {promotion}")
            uci = (from_sq + to_sq + p).lower()
        else:
            uci = (from_sq + to_sq).lower()

        try:
            move = chess.Move.from_uci(uci)
        except ValueError:
            raise IllegalMove(f"invalid move format: {uci}")

        # A pawn reaching the last rank without a piece named becomes a queen
        if move.promotion is None and board.piece_type_at(move.from_square) == chess.PAWN \
                and chess.square_rank(move.to_square) in (0, 7):
            move = chess.Move(move.from_square, move.to_square, promotion=chess.QUEEN)

        if move not in board.legal_moves:
            raise IllegalMove(f"illegal move: {uci}")
        return move

    def parse(self, board: chess.Board, text: str) -> chess.Move:
        """Coordinate form (e2e4, e7e8q) first, then SAN."""
        raw = text.strip()
        m = COORD_RE.match(raw.lower())
        if m:
            try:
                return self.resolve(board, m.group(1), m.group(2), m.group(3))
            except IllegalMove:
                pass
        try:
            return board.parse_san(raw)
        except ValueError:
            raise IllegalMove(f"illegal move: {raw}")

    def apply_move(self, board: chess.Board, from_sq: str, to_sq: str,
                   promotion: Optional[str] = None) -> Move:
        move = self.resolve(board, from_sq, to_sq, promotion)
        return self.push(board, move)

    def push(self, board: chess.Board, move: chess.Move) -> Move:
        described = self.describe(board, move)
        board.push(move)
        return described

    def status(self, board: chess.Board) -> Status:
        if board.is_checkmate():
            return Status.CHECKMATE
        if board.is_stalemate():
            return Status.STALEMATE
        if board.is_seventyfive_moves() or board.is_fivefold_repetition() or board.can_claim_fifty_moves():
            return Status.DRAW
        if board.is_repetition(3):
            return Status.REPETITION
        if board.is_insufficient_material():
            return Status.INSUFFICIENT
        if board.is_check():
            return Status.CHECK
        return Status.ONGOING


RULES = RulesAdapter()
