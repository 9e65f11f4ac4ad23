from __future__ import annotations


class ScoresError(Exception):
    """Base class for scoring engine failures."""


class StoreUnavailable(ScoresError):
    """The database could not be reached or stayed locked past its timeout.

    Retryable: the engine does not buffer writes, callers decide whether to
    try again.
    """


class InvariantViolation(ScoresError, RuntimeError):
    """A write that must always change a row changed nothing."""


class LeaderboardUnavailable(ScoresError):
    """No cached leaderboard exists and recomputing it failed."""


__all__ = [
    "InvariantViolation",
    "LeaderboardUnavailable",
    "ScoresError",
    "StoreUnavailable",
]
