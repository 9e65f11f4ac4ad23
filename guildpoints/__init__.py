"""Activity scoring and leaderboards for linked Discord and game accounts."""

from .db import Database
from .scores import CachedLeaderboard, ScoresManager, TotalPoints

__all__ = ["CachedLeaderboard", "Database", "ScoresManager", "TotalPoints"]
