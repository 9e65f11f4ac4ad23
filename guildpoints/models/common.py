from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Platform(str, Enum):
    DISCORD = "discord"
    GAME = "game"


class Activity(str, Enum):
    MESSAGES = "messages"
    COMMANDS = "commands"


class Membership(str, Enum):
    ALL = "all_members"
    ONLINE = "online_members"


def counter_table_for(platform: Platform | str, activity: Activity | str) -> str:
    """``(discord, messages)`` -> ``discord_messages``."""
    return f"{Platform(platform).value}_{Activity(activity).value}"


@dataclass(frozen=True)
class CounterRow:
    identity: str
    count: int
    bucket: int


@dataclass(frozen=True)
class LinkedCount:
    """A counter row resolved to its primary identity."""

    identity: str
    linked_identity: Optional[str]
    count: int
    bucket: int


@dataclass(frozen=True)
class Timeframe:
    identity: str
    from_ts: int
    to_ts: int
    leniency: int = 0


@dataclass(frozen=True)
class LinkedTimeframe:
    identity: str
    linked_identity: Optional[str]
    from_ts: int
    to_ts: int


@dataclass(frozen=True)
class DurationEntry:
    identity: str
    linked_identity: Optional[str]
    total_seconds: int


__all__ = [
    "Activity",
    "CounterRow",
    "DurationEntry",
    "LinkedCount",
    "LinkedTimeframe",
    "Membership",
    "Platform",
    "Timeframe",
    "counter_table_for",
]
