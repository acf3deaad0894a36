# Path: chessarena/app.py
"""
Purpose: FastAPI surface over the arena: session lifecycle, two-phase move
selection, moves, resignation, owner assist and player stats.
Usage: uvicorn chessarena.app:app, or `python -m chessarena`.

Engine replies and auto-play moves run after the response is sent; clients
poll the session to see them.
"""
from __future__ import annotations

import logging
from typing import Optional

import chess
from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from .assist import AssistService
from .autoplay import AutoPlayOrchestrator
from .config import Settings
from .engine_client import EngineClient
from .errors import (AlreadyInSession, ArenaError, IllegalMove, NotAParticipant, NothingToUndo,
                     NotPermitted, SessionNotFound)
from .models import (MoveDTO, MoveRequest, MoveResponse, NewSessionRequest, PlayerRequest,
                     ResignResponse, SelectRequest, SelectResponse, StatsDTO, TargetDTO)
from .registry import SessionRegistry
from .session import DEFAULT_LEVEL, ENGINE_LEVELS, EngineOpponent, GameSession, Human

log = logging.getLogger(__name__)

_STATUS_CODES = {
    SessionNotFound: 404,
    NotAParticipant: 403,
    NotPermitted: 403,
    AlreadyInSession: 409,
    NothingToUndo: 409,
    IllegalMove: 422,
}


def create_app(settings: Optional[Settings] = None, engine: Optional[EngineClient] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    engine = engine or EngineClient.from_settings(settings)
    registry = SessionRegistry.from_settings(settings)
    autoplay = AutoPlayOrchestrator.from_settings(settings, registry, engine)
    assist = AssistService(engine, autoplay, owner_id=settings.owner_id, depth=settings.autoplay_depth)

    app = FastAPI(title="chessarena", version="1.0.0")
    app.state.settings = settings
    app.state.engine = engine
    app.state.registry = registry
    app.state.autoplay = autoplay
    app.state.assist = assist

    @app.on_event("startup")
    async def _startup():
        await engine.start()
        log.info("arena up (engine %s)", "ready" if engine.available else "fallback")

    @app.on_event("shutdown")
    async def _shutdown():
        await autoplay.shutdown()
        registry.clear()
        await engine.close()

    @app.exception_handler(ArenaError)
    async def _arena_error(request: Request, exc: ArenaError):
        code = next((c for t, c in _STATUS_CODES.items() if isinstance(exc, t)), 400)
        return JSONResponse(status_code=code, content={"detail": str(exc)})

    def _ensure_session(sid: str) -> GameSession:
        s = registry.get(sid)
        if not s:
            raise SessionNotFound(sid)
        return s

    def _ensure_turn(s: GameSession, player_id: str) -> None:
        color = s.color_of(player_id)
        if color is None:
            raise NotAParticipant(player_id)
        if color != s.turn:
            raise NotPermitted("not your turn")

    @app.post("/sessions")
    async def create_session(req: NewSessionRequest):
        white = Human(req.white.id, req.white.name)
        if req.black is not None:
            black = Human(req.black.id, req.black.name)
        else:
            key = (req.level or DEFAULT_LEVEL).lower()
            if key not in ENGINE_LEVELS:
                raise HTTPException(400, f"Unknown level; choose from {', '.join(ENGINE_LEVELS)}")
            black = EngineOpponent(ENGINE_LEVELS[key])
        assisted = None
        if assist.is_owner(white.id):
            assisted = chess.WHITE
        elif isinstance(black, Human) and assist.is_owner(black.id):
            assisted = chess.BLACK
        s = registry.create(white, black, time_limit_ms=req.timeLimitMs, assisted=assisted,
                            channel_id=req.channelId)
        return JSONResponse(s.snapshot().model_dump(by_alias=True))

    @app.get("/sessions/{sid}")
    async def get_session(sid: str):
        return JSONResponse(_ensure_session(sid).snapshot().model_dump(by_alias=True))

    @app.get("/players/{pid}/session")
    async def find_session(pid: str):
        s = registry.find(pid)
        if not s:
            raise HTTPException(404, "Not in a game")
        return JSONResponse(s.snapshot().model_dump(by_alias=True))

    @app.post("/sessions/{sid}/select")
    async def select_piece(sid: str, req: SelectRequest):
        s = _ensure_session(sid)
        async with s.lock:
            _ensure_turn(s, req.playerId)
            squares = s.select_piece(req.square)
            targets = [
                TargetDTO(to=m.to_square, san=m.san, captured=m.captured, promotion=m.promotion)
                for m in s.legal_targets(req.square)
            ] if squares else []
        resp = SelectResponse(square=req.square.lower(), targets=targets, phase=s.phase.value)
        return JSONResponse(resp.model_dump())

    @app.post("/sessions/{sid}/move")
    async def move(sid: str, req: MoveRequest, background: BackgroundTasks):
        s = _ensure_session(sid)
        async with s.lock:
            _ensure_turn(s, req.playerId)
            if req.notation is not None:
                record = s.apply_compact(req.notation)
            else:
                record = s.apply_move(req.from_square, req.to_square, req.promotion)
        resp = MoveResponse(
            move=MoveDTO.from_move(record.move),
            state=s.snapshot(),
        )
        background.add_task(autoplay.after_move, s)
        return JSONResponse(resp.model_dump(by_alias=True))

    @app.post("/sessions/{sid}/resign")
    async def resign(sid: str, req: PlayerRequest):
        s = _ensure_session(sid)
        async with s.lock:
            message = s.resign(req.playerId)
        autoplay.finish_if_over(s)
        return JSONResponse(ResignResponse(message=message, state=s.snapshot()).model_dump(by_alias=True))

    # ---- Owner assist ----

    @app.post("/sessions/{sid}/assist/hint")
    async def assist_hint(sid: str, req: PlayerRequest):
        top = await assist.hint(_ensure_session(sid), req.playerId)
        return JSONResponse(top.model_dump())

    @app.post("/sessions/{sid}/assist/eval")
    async def assist_eval(sid: str, req: PlayerRequest):
        ev = await assist.evaluate(_ensure_session(sid), req.playerId)
        return JSONResponse({"analysis": ev.analysis.model_dump(), "advantage": ev.advantage})

    @app.post("/sessions/{sid}/assist/nerf")
    async def assist_nerf(sid: str, req: PlayerRequest):
        s = _ensure_session(sid)
        nerfed = assist.toggle_nerf(s, req.playerId)
        return JSONResponse({"nerfed": nerfed, "depth": s.depth, "levelLabel": s.level_label})

    @app.post("/sessions/{sid}/assist/autoplay")
    async def assist_autoplay(sid: str, req: PlayerRequest):
        enabled = assist.toggle_auto_play(_ensure_session(sid), req.playerId)
        return JSONResponse({"autoPlay": enabled})

    @app.post("/sessions/{sid}/assist/undo")
    async def assist_undo(sid: str, req: PlayerRequest):
        s = _ensure_session(sid)
        undone = await assist.undo(s, req.playerId)
        return JSONResponse({"undone": [r.san for r in undone], "state": s.snapshot().model_dump(by_alias=True)})

    @app.post("/sessions/{sid}/assist/autorun")
    async def assist_autorun(sid: str, req: PlayerRequest):
        s = _ensure_session(sid)
        record = await assist.autorun(s, req.playerId)
        move = MoveDTO.from_move(record.move).model_dump(by_alias=True) if record else None
        return JSONResponse({"move": move, "state": s.snapshot().model_dump(by_alias=True)})

    # ---- Stats ----

    @app.get("/players/{pid}/stats")
    async def player_stats(pid: str):
        st = registry.stats.get(pid)
        dto = StatsDTO(wins=st.wins, losses=st.losses, draws=st.draws, games=st.games, winRate=st.win_rate)
        return JSONResponse(dto.model_dump())

    return app


app = create_app()
