"""Tests for the local fallback search."""

import chess

from chessarena.search import MATE, FallbackSearch, mate_in

BACK_RANK_MATE_FEN = "6k1/5ppp/8/8/8/8/8/R5K1 w - - 0 1"


def test_finds_mate_in_one() -> None:
    search = FallbackSearch(2)
    move, score, pv = search.best_move(chess.Board(BACK_RANK_MATE_FEN), 2)
    assert move.uci() == "a1a8"
    assert mate_in(score) == 1
    assert pv[0] == move


def test_takes_hanging_queen() -> None:
    board = chess.Board("4k3/8/8/3q4/4P3/8/8/4K3 w - - 0 1")
    move, score, _ = FallbackSearch(1).best_move(board, 1)
    assert move.uci() == "e4d5"
    assert score > 0


def test_depth_is_capped() -> None:
    assert FallbackSearch(10).max_depth == 4
    assert FallbackSearch(3).clamp_depth(15) == 3
    assert FallbackSearch(3).clamp_depth(0) == 1


def test_rank_moves_sorted() -> None:
    lines = FallbackSearch(1).rank_moves(chess.Board(), 1, 3)
    assert len(lines) == 3
    scores = [score for _, score, _ in lines]
    assert scores == sorted(scores, reverse=True)


def test_no_moves_in_mate() -> None:
    board = chess.Board("R5k1/5ppp/8/8/8/8/8/6K1 b - - 1 1")
    assert FallbackSearch(2).best_move(board, 2) is None


def test_mate_in_helper() -> None:
    assert mate_in(MATE - 1) == 1
    assert mate_in(MATE - 3) == 2
    assert mate_in(-MATE + 2) == -1
    assert mate_in(150) is None
