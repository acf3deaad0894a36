"""Tests for engine replies and assisted auto-play on live sessions."""

import asyncio
import random

import chess

from chessarena.autoplay import AutoPlayOrchestrator
from chessarena.registry import SessionRegistry
from chessarena.session import EngineOpponent, Human
from conftest import BACK_RANK_MATE_FEN, START_FEN, first_legal

ALICE = Human("alice", "Alice")
BOB = Human("bob", "Bob")


class MoveLog:
    def __init__(self, after=None):
        self.moves = []
        self.after = after

    async def __call__(self, session, record, source):
        self.moves.append((source, record.uci))
        if self.after is not None:
            self.after(session, self.moves)


def orchestrator(registry, engine, delay=(0, 0), on_move=None, retries=1):
    return AutoPlayOrchestrator(registry, engine, autoplay_depth=3, delay_ms=delay,
                                retries=retries, rng=random.Random(7), on_move=on_move)


async def drain(orch, session):
    while orch.pending(session.id) is not None:
        await orch.pending(session.id)


def test_engine_replies_after_human_move(engine_pair) -> None:
    async def scenario():
        client, _ = await engine_pair()
        registry = SessionRegistry()
        log = MoveLog()
        orch = orchestrator(registry, client, on_move=log)
        s = registry.create(ALICE, EngineOpponent())
        s.apply_compact("e2e4")
        fen = s.to_fen()
        await orch.after_move(s)
        assert len(s.history) == 2
        assert s.history[1].uci == first_legal(fen)
        assert log.moves == [("engine", first_legal(fen))]
        assert s.turn == chess.WHITE
        await client.close()

    asyncio.run(scenario())


def test_engine_opens_as_white(engine_pair) -> None:
    async def scenario():
        client, _ = await engine_pair()
        registry = SessionRegistry()
        orch = orchestrator(registry, client)
        s = registry.create(EngineOpponent(), ALICE)
        record = await orch.play_engine_turn(s)
        assert record.uci == first_legal(START_FEN)
        assert s.turn == chess.BLACK
        await client.close()

    asyncio.run(scenario())


def test_auto_play_runs_until_disabled(engine_pair) -> None:
    def stop_after_two(session, moves):
        if sum(1 for src, _ in moves if src == "auto") == 2:
            session.auto_play = False

    async def scenario():
        client, _ = await engine_pair()
        registry = SessionRegistry()
        log = MoveLog(after=stop_after_two)
        orch = orchestrator(registry, client, on_move=log)
        s = registry.create(ALICE, EngineOpponent(), assisted=chess.WHITE)
        s.auto_play = True
        orch.schedule(s)
        await drain(orch, s)
        assert [src for src, _ in log.moves] == ["auto", "engine", "auto", "engine"]
        assert len(s.history) == 4
        assert orch.pending(s.id) is None
        await client.close()

    asyncio.run(scenario())


def test_one_pending_auto_move_per_session(fallback_client) -> None:
    async def scenario():
        client = fallback_client()
        registry = SessionRegistry()
        orch = orchestrator(registry, client, delay=(10_000, 10_000))
        s = registry.create(ALICE, BOB, assisted=chess.WHITE)
        s.auto_play = True
        first = orch.schedule(s)
        assert orch.schedule(s) is first
        await orch.shutdown()
        assert first.cancelled()
        assert s.history == []

    asyncio.run(scenario())


def test_auto_play_disabled_during_wait(fallback_client) -> None:
    async def scenario():
        client = fallback_client()
        registry = SessionRegistry()
        orch = orchestrator(registry, client, delay=(200, 200))
        s = registry.create(ALICE, BOB, assisted=chess.WHITE)
        s.auto_play = True
        task = orch.schedule(s)
        await asyncio.sleep(0.05)
        s.toggle_auto_play()
        await task
        assert s.history == []

    asyncio.run(scenario())


def test_session_destroyed_during_wait(fallback_client) -> None:
    async def scenario():
        client = fallback_client()
        registry = SessionRegistry()
        orch = orchestrator(registry, client, delay=(10_000, 10_000))
        s = registry.create(ALICE, BOB, assisted=chess.WHITE)
        s.auto_play = True
        task = orch.schedule(s)
        await asyncio.sleep(0)
        registry.destroy(s.id)
        await asyncio.wait_for(task, timeout=1)
        assert s.history == []

    asyncio.run(scenario())


def test_human_move_during_wait_drops_auto_move(fallback_client) -> None:
    async def scenario():
        client = fallback_client()
        registry = SessionRegistry()
        orch = orchestrator(registry, client, delay=(200, 200))
        s = registry.create(ALICE, BOB, assisted=chess.WHITE)
        s.auto_play = True
        task = orch.schedule(s)
        await asyncio.sleep(0.05)
        s.apply_compact("e2e4")
        await task
        assert [r.uci for r in s.history] == ["e2e4"]

    asyncio.run(scenario())


def test_position_change_during_query_drops_result(engine_pair) -> None:
    async def scenario():
        client, _ = await engine_pair(delay=lambda fen: 0.3)
        registry = SessionRegistry()
        orch = orchestrator(registry, client)
        s = registry.create(ALICE, BOB, assisted=chess.WHITE)
        s.auto_play = True
        task = orch.schedule(s)
        await asyncio.sleep(0.1)
        async with s.lock:
            s.apply_compact("d2d4")
        await task
        assert [r.uci for r in s.history] == ["d2d4"]
        await client.close()

    asyncio.run(scenario())


def test_destroy_during_query_drops_result(engine_pair) -> None:
    async def scenario():
        client, _ = await engine_pair(delay=lambda fen: 0.3)
        registry = SessionRegistry()
        log = MoveLog()
        orch = orchestrator(registry, client, on_move=log)
        s = registry.create(ALICE, EngineOpponent(), assisted=chess.WHITE)
        s.auto_play = True
        task = orch.schedule(s)
        await asyncio.sleep(0.1)
        registry.destroy(s.id)
        await task
        assert s.history == []
        assert log.moves == []
        await client.close()

    asyncio.run(scenario())


def test_human_mate_ends_session(fallback_client) -> None:
    async def scenario():
        registry = SessionRegistry()
        orch = orchestrator(registry, fallback_client())
        s = registry.create(ALICE, EngineOpponent(), fen=BACK_RANK_MATE_FEN)
        s.apply_compact("Ra8#")
        await orch.after_move(s)
        assert registry.get(s.id) is None
        assert s.closed
        assert registry.stats.get("alice").wins == 1
        assert len(s.history) == 1

    asyncio.run(scenario())


def test_engine_mate_records_loss(fallback_client) -> None:
    async def scenario():
        registry = SessionRegistry()
        client = fallback_client(max_depth=1)
        orch = orchestrator(registry, client)
        s = registry.create(ALICE, EngineOpponent(), fen="r5k1/8/8/8/8/8/5PPP/6K1 b - - 0 1")
        record = await orch.play_engine_turn(s)
        assert record.uci == "a8a1"
        assert s.is_over()
        assert registry.find("alice") is None
        stats = registry.stats.get("alice")
        assert (stats.losses, stats.games) == (1, 1)
        await client.close()

    asyncio.run(scenario())


def test_silent_engine_stalls_turn(engine_pair) -> None:
    async def scenario():
        client, fake = await engine_pair(timeout_ms=100, answer_go=False)
        registry = SessionRegistry()
        orch = orchestrator(registry, client, retries=1)
        s = registry.create(ALICE, EngineOpponent())
        s.apply_compact("e2e4")
        await orch.after_move(s)
        assert len(s.history) == 1
        assert registry.is_live(s)
        assert len(fake.commands("go depth")) == 2
        await client.close()

    asyncio.run(scenario())


def test_pending_auto_move_retries_after_position_moves_on(fallback_client) -> None:
    async def scenario():
        client = fallback_client()
        registry = SessionRegistry()
        log = MoveLog()
        orch = orchestrator(registry, client, delay=(200, 200), on_move=log)
        s = registry.create(ALICE, BOB, assisted=chess.WHITE)
        s.auto_play = True
        orch.schedule(s)
        await asyncio.sleep(0.05)
        s.apply_compact("e2e4")
        s.apply_compact("e7e5")
        await drain(orch, s)
        assert len(s.history) == 3
        assert [src for src, _ in log.moves] == ["auto"]
        assert s.turn == chess.BLACK

    asyncio.run(scenario())
