from __future__ import annotations

import math
from dataclasses import dataclass
from fractions import Fraction
from typing import Dict, Iterable, List, Optional

from ..models.common import LinkedCount, LinkedTimeframe


@dataclass(frozen=True)
class ScoringPolicy:
    """Diminishing returns for repeated actions.

    The first action inside ``window`` seconds earns ``base_score``; the n-th
    earns ``base_score / n``, never less than 1.
    """

    base_score: int
    window: int


@dataclass(frozen=True)
class PresencePolicy:
    base_score: int = 15
    cooldown: int = 15 * 60


MESSAGES = ScoringPolicy(base_score=30, window=3 * 60)
COMMANDS = ScoringPolicy(base_score=15, window=5 * 60)
ONLINE = PresencePolicy()


@dataclass
class ActivityPoint:
    identity: str
    linked_identity: Optional[str]
    points: Fraction = Fraction(0)


def _entry(
    board: Dict[str, ActivityPoint], identity: str, linked: Optional[str]
) -> ActivityPoint:
    entry = board.get(identity)
    if entry is None:
        entry = ActivityPoint(identity, linked or None)
        board[identity] = entry
    elif entry.linked_identity is None and linked:
        entry.linked_identity = linked
    return entry


def decaying_count_points(
    rows: Iterable[LinkedCount], policy: ScoringPolicy
) -> Dict[str, ActivityPoint]:
    """Score counter rows; a row with ``count=N`` is N actions at its bucket."""
    board: Dict[str, ActivityPoint] = {}
    history: Dict[str, List[int]] = {}

    for row in sorted(rows, key=lambda r: r.bucket):
        if not row.identity:
            continue
        entry = _entry(board, row.identity, row.linked_identity)

        recent = [ts for ts in history.get(row.identity, ()) if ts + policy.window > row.bucket]
        for _ in range(row.count):
            recent.append(row.bucket)
            entry.points += max(Fraction(1), Fraction(policy.base_score, len(recent)))
        history[row.identity] = recent

    return board


def presence_points(
    frames: Iterable[LinkedTimeframe],
    policy: PresencePolicy,
    from_ts: int,
    to_ts: int,
) -> Dict[str, ActivityPoint]:
    """Award ``base_score`` once per ``cooldown`` of continuous presence.

    Overlapping or adjacent frames of one session share a single cursor, so
    splitting a session into several frames never earns extra points.
    """
    clamped = [
        LinkedTimeframe(f.identity, f.linked_identity, max(f.from_ts, from_ts), min(f.to_ts, to_ts))
        for f in frames
    ]
    clamped.sort(key=lambda f: f.from_ts)

    board: Dict[str, ActivityPoint] = {}
    reached_at: Dict[str, int] = {}

    for frame in clamped:
        if frame.from_ts > frame.to_ts:
            continue
        entry = _entry(board, frame.identity, frame.linked_identity)

        reached = reached_at.get(frame.identity)
        if reached is not None and frame.to_ts < reached:
            continue

        if reached is None:
            reached = frame.from_ts
        elif reached < frame.from_ts:
            # A gap shorter than one cooldown counts as the same session.
            if reached + policy.cooldown > frame.to_ts:
                continue
            reached += policy.cooldown
        else:
            reached = max(reached, frame.from_ts)

        while reached <= frame.to_ts:
            entry.points += policy.base_score
            reached += policy.cooldown

        reached_at[frame.identity] = reached

    return board


def floored(points: Fraction | int | float) -> int:
    return int(math.floor(points))


__all__ = [
    "COMMANDS",
    "MESSAGES",
    "ONLINE",
    "ActivityPoint",
    "PresencePolicy",
    "ScoringPolicy",
    "decaying_count_points",
    "floored",
    "presence_points",
]
