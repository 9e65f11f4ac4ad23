from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from . import config
from .db import COUNTER_TABLES, TIMEFRAME_TABLES, Database
from .errors import LeaderboardUnavailable, ScoresError
from .models.common import (
    Activity,
    DurationEntry,
    Membership,
    Platform,
    Timeframe,
    counter_table_for,
)
from .models.counters import CounterStore
from .models.links import BotRegistry, IdentityLinker
from .models.timeframes import TimeframeStore
from .utils.scoring import (
    COMMANDS,
    MESSAGES,
    ONLINE,
    ActivityPoint,
    PresencePolicy,
    ScoringPolicy,
    decaying_count_points,
    floored,
    presence_points,
)
from .utils.time import DAY, Clock, bucket_of, system_clock, to_iso, years_before

log = logging.getLogger(__name__)

# window key -> lookback in seconds (None = since the epoch)
WINDOWS: Dict[str, Optional[int]] = {
    "30days": 30 * DAY,
    "alltime": None,
}

# Game names are held for 30 days before release, so a name seen within that
# span still belongs to the same account.
LEGACY_MIGRATION_LOOKBACK = 30 * DAY

GAME_COUNTER_TABLES = (
    counter_table_for(Platform.GAME, Activity.MESSAGES),
    counter_table_for(Platform.GAME, Activity.COMMANDS),
)

Resolver = Callable[[Set[str]], Mapping[str, Optional[str]]]


@dataclass(frozen=True)
class TotalPoints:
    identity: str
    linked_identity: Optional[str]
    total: int
    chat: int
    commands: int
    online: int


@dataclass(frozen=True)
class MessageTotal:
    identity: str
    linked_identity: Optional[str]
    count: int


@dataclass(frozen=True)
class CachedLeaderboard:
    computed_at: float
    window_key: str
    entries: Tuple[TotalPoints, ...]


class ScoresManager:
    """Records activity and turns it into ranked, cached leaderboards."""

    def __init__(
        self,
        db: Database,
        *,
        linker: Optional[IdentityLinker] = None,
        bots: Optional[BotRegistry] = None,
        clock: Clock = system_clock,
        cache_ttl: float = config.LEADERBOARD_CACHE_TTL_SEC,
        leniency: int = config.LENIENCY_SEC,
        message_retention_years: int = config.MESSAGE_RETENTION_YEARS,
        member_retention_years: int = config.MEMBER_RETENTION_YEARS,
        messages_policy: ScoringPolicy = MESSAGES,
        commands_policy: ScoringPolicy = COMMANDS,
        online_policy: PresencePolicy = ONLINE,
    ) -> None:
        self.db = db
        self.counters = CounterStore(db)
        self.timeframes = TimeframeStore(db)
        self.linker = linker or IdentityLinker(db)
        self.bots = bots or BotRegistry(db)
        self.clock = clock
        self.cache_ttl = cache_ttl
        self.leniency = leniency
        self.message_retention_years = message_retention_years
        self.member_retention_years = member_retention_years
        self.messages_policy = messages_policy
        self.commands_policy = commands_policy
        self.online_policy = online_policy

        # window key -> immutable snapshot, swapped whole on refresh
        self._cache: Dict[str, CachedLeaderboard] = {}
        self._refresh_locks = {key: threading.Lock() for key in WINDOWS}

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------
    def _now(self, ts: Optional[float]) -> float:
        return self.clock() if ts is None else ts

    def record_message(self, platform: Platform | str, identity: str, timestamp: Optional[float] = None) -> None:
        table = counter_table_for(platform, Activity.MESSAGES)
        self.counters.increment(table, identity, bucket_of(self._now(timestamp)))

    def record_command(self, platform: Platform | str, identity: str, timestamp: Optional[float] = None) -> None:
        table = counter_table_for(platform, Activity.COMMANDS)
        self.counters.increment(table, identity, bucket_of(self._now(timestamp)))

    def record_presence(
        self, identity: str, from_ts: float, to_ts: float, leniency: Optional[int] = None
    ) -> None:
        self.record_presences([self._frame(identity, from_ts, to_ts, leniency)])

    def record_membership(
        self, identity: str, from_ts: float, to_ts: float, leniency: Optional[int] = None
    ) -> None:
        self.record_memberships([self._frame(identity, from_ts, to_ts, leniency)])

    def record_presences(self, entries: Iterable[Timeframe]) -> int:
        return self.timeframes.append_many(Membership.ONLINE.value, entries)

    def record_memberships(self, entries: Iterable[Timeframe]) -> int:
        return self.timeframes.append_many(Membership.ALL.value, entries)

    def _frame(self, identity: str, from_ts: float, to_ts: float, leniency: Optional[int]) -> Timeframe:
        return Timeframe(
            identity,
            int(from_ts),
            int(to_ts),
            self.leniency if leniency is None else int(leniency),
        )

    def register_automation_identity(self, identity: str) -> None:
        self.bots.add(identity, now=self.clock())

    # ------------------------------------------------------------------
    # Points
    # ------------------------------------------------------------------
    def _count_points(self, activity: Activity, policy: ScoringPolicy, from_ts: float, to_ts: float) -> Dict[str, ActivityPoint]:
        rows = self.counters.rows_with_links(Platform.GAME, activity.value, from_ts, to_ts)
        rows += self.counters.rows_with_links(Platform.DISCORD, activity.value, from_ts, to_ts)
        return decaying_count_points(rows, policy)

    def _online_points(self, from_ts: float, to_ts: float) -> Dict[str, ActivityPoint]:
        frames = self.timeframes.rows_in_range(Membership.ONLINE.value, from_ts, to_ts)
        return presence_points(frames, self.online_policy, int(from_ts), int(to_ts))

    def get_points(self, from_ts: float, to_ts: float) -> Dict[str, TotalPoints]:
        if from_ts >= to_ts:
            raise ValueError('"from" timestamp must be earlier than the "to" timestamp')

        categories = (
            ("chat", self._count_points(Activity.MESSAGES, self.messages_policy, from_ts, to_ts)),
            ("commands", self._count_points(Activity.COMMANDS, self.commands_policy, from_ts, to_ts)),
            ("online", self._online_points(from_ts, to_ts)),
        )

        acc: Dict[str, dict] = {}
        for name, board in categories:
            for entry in board.values():
                user = acc.get(entry.identity)
                if user is None:
                    user = {
                        "identity": entry.identity,
                        "linked_identity": entry.linked_identity,
                        "total": 0,
                        "chat": 0,
                        "commands": 0,
                        "online": 0,
                    }
                    acc[entry.identity] = user
                elif user["linked_identity"] is None:
                    user["linked_identity"] = entry.linked_identity

                points = floored(entry.points)
                user["total"] += points
                user[name] += points

        return {identity: TotalPoints(**fields) for identity, fields in acc.items()}

    # ------------------------------------------------------------------
    # Leaderboards
    # ------------------------------------------------------------------
    def _window(self, window_key: str) -> Tuple[float, float]:
        if window_key not in WINDOWS:
            raise ValueError(f"unknown leaderboard window: {window_key!r}")
        now = self.clock()
        lookback = WINDOWS[window_key]
        return (0 if lookback is None else now - lookback), now

    def _compute(self, window_key: str) -> CachedLeaderboard:
        from_ts, to_ts = self._window(window_key)
        points = self.get_points(from_ts, to_ts)
        for bot in self.bots.list_known_automation_identities():
            points.pop(bot, None)

        entries = sorted(points.values(), key=lambda p: p.total, reverse=True)
        return CachedLeaderboard(computed_at=to_ts, window_key=window_key, entries=tuple(entries))

    def _fresh(self, cached: Optional[CachedLeaderboard]) -> bool:
        return cached is not None and cached.computed_at + self.cache_ttl > self.clock()

    def get_leaderboard(self, window_key: str) -> CachedLeaderboard:
        """Ranked totals for ``window_key`` ("30days" or "alltime").

        Served from cache while younger than the TTL. If a refresh fails, the
        previous snapshot is served instead; with nothing cached the failure
        surfaces as :class:`LeaderboardUnavailable`.
        """
        if window_key not in WINDOWS:
            raise ValueError(f"unknown leaderboard window: {window_key!r}")

        cached = self._cache.get(window_key)
        if self._fresh(cached):
            return cached  # type: ignore[return-value]

        with self._refresh_locks[window_key]:
            # Another caller may have refreshed while we waited.
            cached = self._cache.get(window_key)
            if self._fresh(cached):
                return cached  # type: ignore[return-value]

            try:
                snapshot = self._compute(window_key)
            except (ScoresError, sqlite3.Error) as e:
                if cached is not None:
                    log.warning(
                        "scores.leaderboard refresh failed window=%s; serving snapshot from %s: %s",
                        window_key,
                        to_iso(cached.computed_at),
                        e,
                    )
                    return cached
                raise LeaderboardUnavailable(
                    f"leaderboard {window_key!r} temporarily unavailable"
                ) from e

            self._cache[window_key] = snapshot
            log.debug("scores.leaderboard refreshed window=%s entries=%d", window_key, len(snapshot.entries))
            return snapshot

    def points_for(self, identity: str, window_key: str = "30days") -> Optional[TotalPoints]:
        """Look up one member by game or chat identity."""
        board = self.get_leaderboard(window_key)
        candidates = [identity]
        game_id = self.linker.lookup_by_chat(identity)
        if game_id is not None:
            candidates.append(game_id)
        for entry in board.entries:
            if entry.identity in candidates:
                return entry
        return None

    def get_duration(self, table: str, from_ts: float, to_ts: float) -> List[DurationEntry]:
        ignore = self.bots.list_known_automation_identities()
        return self.timeframes.sum_duration(table, ignore, from_ts, to_ts)

    def get_online_30_days(self) -> List[DurationEntry]:
        now = self.clock()
        return self.get_duration(Membership.ONLINE.value, now - 30 * DAY, now)

    def get_message_totals(self, from_ts: float, to_ts: float) -> List[MessageTotal]:
        """Plain message counts per member, both platforms merged by link."""
        ignore = self.bots.list_known_automation_identities()
        rows = self.counters.rows_with_links(Platform.GAME, Activity.MESSAGES.value, from_ts, to_ts)
        rows += self.counters.rows_with_links(Platform.DISCORD, Activity.MESSAGES.value, from_ts, to_ts)

        totals: Dict[str, List] = {}
        for row in rows:
            if row.identity in ignore:
                continue
            item = totals.setdefault(row.identity, [row.linked_identity, 0])
            if item[0] is None:
                item[0] = row.linked_identity
            item[1] += row.count

        result = [MessageTotal(identity, linked, count) for identity, (linked, count) in totals.items()]
        result.sort(key=lambda m: m.count, reverse=True)
        return result

    def get_game_messages(self, from_ts: float, to_ts: float, limit: int) -> Tuple[List[Tuple[str, int]], int]:
        """Top ``limit`` game-side chatters and the overall message count."""
        table = counter_table_for(Platform.GAME, Activity.MESSAGES)
        ignore = self.bots.list_known_automation_identities()
        top = self.counters.sum_in_range(table, None, from_ts, to_ts, exclude=ignore, limit=limit)
        total = self.counters.total_in_range(table, from_ts, to_ts, exclude=ignore)
        return top, total

    def get_discord_messages(self, chat_ids: Sequence[str], from_ts: float, to_ts: float) -> List[Tuple[str, int]]:
        if not chat_ids:
            return []
        table = counter_table_for(Platform.DISCORD, Activity.MESSAGES)
        return self.counters.sum_in_range(table, chat_ids, from_ts, to_ts)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------
    def clean(self) -> int:
        """Delete rows past the retention horizon. Safe to re-run."""
        now = self.clock()
        oldest_message = years_before(now, self.message_retention_years)
        oldest_member = years_before(now, self.member_retention_years)

        count = 0
        with self.db.transaction(immediate=True) as con:
            for table in COUNTER_TABLES:
                count += self.counters.delete_older_than(con, table, oldest_message)
            for table in TIMEFRAME_TABLES:
                count += self.timeframes.delete_ended_before(con, table, oldest_member)

        if count:
            log.info(
                "scores.clean removed=%d messages_before=%s members_before=%s",
                count,
                to_iso(oldest_message),
                to_iso(oldest_member),
            )
        return count

    def migrate(self, cutoff: int, pairs: Iterable[Tuple[str, str]]) -> int:
        """Rewrite legacy identifiers newer than ``cutoff`` to canonical ones."""
        changed = self.counters.reassign(GAME_COUNTER_TABLES, cutoff, pairs)
        if changed > 0:
            log.debug("scores.migrate rows=%d", changed)
        return changed

    def migrate_legacy(self, resolver: Resolver) -> int:
        cutoff = int(self.clock()) - LEGACY_MIGRATION_LOOKBACK

        names: Set[str] = set()
        for table in GAME_COUNTER_TABLES:
            names |= self.counters.legacy_identities(table, cutoff)
        if not names:
            return 0
        log.debug("scores.migrate found %d legacy identifiers", len(names))

        resolved = resolver(names)
        pairs = [(name, new) for name, new in resolved.items() if new]
        if len(pairs) < len(names):
            log.debug("scores.migrate no canonical id for %d identifiers; skipping those", len(names) - len(pairs))
        if not pairs:
            return 0
        return self.migrate(cutoff, pairs)
