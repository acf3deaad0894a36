"""Domain errors raised by sessions, the registry and the engine client."""


class ArenaError(Exception):
    """Base class for every error the arena reports to its callers."""


class IllegalMove(ArenaError, ValueError):
    pass


class AlreadyInSession(ArenaError):
    def __init__(self, participant_id: str):
        super().__init__(f"participant {participant_id} is already in a game")
        self.participant_id = participant_id


class NotAParticipant(ArenaError):
    def __init__(self, participant_id: str):
        super().__init__(f"{participant_id} is not playing in this game")
        self.participant_id = participant_id


class NothingToUndo(ArenaError):
    pass


class SessionNotFound(ArenaError, KeyError):
    pass


class NotPermitted(ArenaError):
    pass


# Internal to the engine layer; callers never see these.
class EngineUnavailable(ArenaError):
    pass


class EngineTimeout(ArenaError):
    """Deadline passed; `partial` is whatever the search produced so far."""

    def __init__(self, message: str, partial=None):
        super().__init__(message)
        self.partial = partial


class StaleResult(ArenaError):
    pass
