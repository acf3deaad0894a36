# Path: chessarena/search.py
"""
Purpose: Shallow alpha-beta search used when the UCI engine is unavailable.
Usage: FallbackSearch(max_depth=3).best_move(board, depth)

Scores are centipawns from the side to move. Mate scores are MATE - ply so
the distance to mate can be recovered with mate_in().
"""
from __future__ import annotations

import math
from typing import List, Optional, Tuple

import chess

MATE = 30_000
MAX_FALLBACK_DEPTH = 4

PIECE_VALUES = {
    chess.PAWN: 100,
    chess.KNIGHT: 320,
    chess.BISHOP: 330,
    chess.ROOK: 500,
    chess.QUEEN: 900,
    chess.KING: 0,
}

# Small bonus for occupying the centre; enough to break ties between quiet moves.
CENTER_BONUS = [0] * 64
for _sq in (chess.D4, chess.E4, chess.D5, chess.E5):
    CENTER_BONUS[_sq] = 20
for _sq in (chess.C3, chess.D3, chess.E3, chess.F3, chess.C6, chess.D6, chess.E6, chess.F6,
            chess.C4, chess.F4, chess.C5, chess.F5):
    CENTER_BONUS[_sq] = 8

Line = Tuple[chess.Move, int, List[chess.Move]]


def mate_in(score: int) -> Optional[int]:
    """Moves to mate for a mate score (negative when being mated), else None."""
    if score >= MATE - 100:
        return (MATE - score + 1) // 2
    if score <= -MATE + 100:
        return -((MATE + score) // 2)
    return None


class FallbackSearch:
    def __init__(self, max_depth: int = 3):
        self.max_depth = max(1, min(MAX_FALLBACK_DEPTH, max_depth))
        self.nodes = 0

    def clamp_depth(self, depth: int) -> int:
        return max(1, min(self.max_depth, depth))

    # --- Evaluation ---
    def evaluate(self, board: chess.Board) -> int:
        score = 0
        for piece_type, value in PIECE_VALUES.items():
            for sq in board.pieces(piece_type, chess.WHITE):
                score += value
                if piece_type in (chess.PAWN, chess.KNIGHT):
                    score += CENTER_BONUS[sq]
            for sq in board.pieces(piece_type, chess.BLACK):
                score -= value
                if piece_type in (chess.PAWN, chess.KNIGHT):
                    score -= CENTER_BONUS[sq]
        return score if board.turn == chess.WHITE else -score

    # --- Search ---
    def best_move(self, board: chess.Board, depth: int) -> Optional[Line]:
        lines = self.rank_moves(board, depth, 1)
        return lines[0] if lines else None

    def rank_moves(self, board: chess.Board, depth: int, count: int) -> List[Line]:
        """Root moves sorted best first, each with its score and principal variation."""
        depth = self.clamp_depth(depth)
        self.nodes = 0
        board = board.copy()
        scored: List[Line] = []
        alpha = -math.inf
        for move in self._ordered_moves(board):
            board.push(move)
            # Full window for the first `count` moves so their scores are exact
            if len(scored) < count:
                score, pv = self._search(board, depth - 1, -math.inf, math.inf, 1)
            else:
                score, pv = self._search(board, depth - 1, -math.inf, -alpha, 1)
            board.pop()
            score = -score
            scored.append((move, score, [move] + pv))
            scored.sort(key=lambda item: item[1], reverse=True)
            if len(scored) >= count:
                alpha = scored[count - 1][1]
        return scored[:count]

    def _search(self, board: chess.Board, depth: int, alpha: float, beta: float,
                ply: int) -> Tuple[int, List[chess.Move]]:
        self.nodes += 1
        if board.is_checkmate():
            return -MATE + ply, []
        if board.is_stalemate() or board.is_insufficient_material() or board.is_repetition(3):
            return 0, []
        if depth <= 0:
            return self._qsearch(board, alpha, beta), []

        best = -math.inf
        best_pv: List[chess.Move] = []
        for move in self._ordered_moves(board):
            board.push(move)
            score, pv = self._search(board, depth - 1, -beta, -alpha, ply + 1)
            board.pop()
            score = -score
            if score > best:
                best = score
                best_pv = [move] + pv
            if best > alpha:
                alpha = best
            if alpha >= beta:
                break  # beta cutoff
        return int(best), best_pv

    def _qsearch(self, board: chess.Board, alpha: float, beta: float) -> int:
        stand_pat = self.evaluate(board)
        if stand_pat >= beta:
            return int(beta)
        if alpha < stand_pat:
            alpha = stand_pat

        for move in self._ordered_moves(board):
            if not board.is_capture(move):
                continue
            board.push(move)
            score = -self._qsearch(board, -beta, -alpha)
            board.pop()
            if score >= beta:
                return int(beta)
            if score > alpha:
                alpha = score
        return int(alpha)

    def _ordered_moves(self, board: chess.Board) -> List[chess.Move]:
        # MVV-LVA: captures first by victim-attacker value, then checks
        def mvv_lva_key(m: chess.Move) -> int:
            if board.is_capture(m):
                victim = board.piece_type_at(m.to_square) or chess.PAWN
                attacker = board.piece_type_at(m.from_square) or chess.PAWN
                return 10_000 + PIECE_VALUES[victim] * 10 - PIECE_VALUES[attacker]
            if board.gives_check(m):
                return 100
            return 0
        return sorted(board.legal_moves, key=mvv_lva_key, reverse=True)
