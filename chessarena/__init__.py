"""Multi-session chess arena: sessions, a shared UCI engine and assisted auto-play."""

from .engine_client import EngineClient
from .errors import (AlreadyInSession, ArenaError, IllegalMove, NotAParticipant, NothingToUndo,
                     NotPermitted, SessionNotFound)
from .registry import SessionRegistry, StatsLedger
from .rules import RulesAdapter, Status
from .session import ENGINE_LEVELS, EngineOpponent, GameSession, Human, Phase

__version__ = "1.0.0"
