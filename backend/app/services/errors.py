"""
Engine exceptions.

Configuration and entrant-count errors are raised before any bracket state is
constructed. UnresolvedSlotError signals a defect in bracket construction and
is never translated into a user-facing error.
"""


class TournamentEngineError(Exception):
    """Base exception for bracket/progression engine errors"""
    pass


class InsufficientEntrantsError(TournamentEngineError):
    """Fewer than 2 teams were supplied to a bracket build"""
    pass


class InvalidStageConfigError(TournamentEngineError):
    """Malformed stage, group, pot or advancement configuration"""
    pass


class InvalidScoreError(TournamentEngineError):
    """Score does not satisfy best-of arithmetic"""
    pass


class UnresolvedSlotError(TournamentEngineError):
    """Forward link points at a missing match or collides with an occupied slot"""
    pass


class InvalidTransitionError(TournamentEngineError):
    """Match or stage state machine does not allow the requested transition"""
    pass


class InvalidScheduleConfigError(TournamentEngineError):
    """Scheduler configuration out of range"""
    pass
