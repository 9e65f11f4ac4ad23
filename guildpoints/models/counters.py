from __future__ import annotations

import logging
import math
import sqlite3
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from ..db import Database, counter_table
from ..errors import InvariantViolation
from .common import CounterRow, LinkedCount, Platform, counter_table_for

log = logging.getLogger(__name__)

# Canonical ids are 32+ characters; anything shorter was recorded by name.
LEGACY_IDENTITY_MAX_LEN = 30


def _bounds(from_ts: float, to_ts: float) -> Tuple[int, int]:
    return int(math.floor(from_ts)), int(math.floor(to_ts))


class CounterStore:
    """Minute-bucketed event counters, one table per (platform, activity)."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def increment(self, table: str, identity: str, bucket: int) -> None:
        t = counter_table(table)
        changed = self.db.execute(
            f"""
            INSERT INTO {t} (bucket, identity, count)
            VALUES (?, ?, 1)
            ON CONFLICT(bucket, identity) DO UPDATE SET
              count = count + 1
            """,
            (int(bucket), identity),
        )
        if changed <= 0:
            raise InvariantViolation(
                f"upsert into {t} changed nothing (identity={identity!r} bucket={bucket})"
            )

    def sum_in_range(
        self,
        table: str,
        identities: Optional[Iterable[str]],
        from_ts: float,
        to_ts: float,
        *,
        exclude: Iterable[str] = (),
        limit: Optional[int] = None,
    ) -> List[Tuple[str, int]]:
        """Total count per identity for buckets in ``[floor(from), floor(to)]``.

        ``identities`` restricts the result; None or empty means everyone.
        """
        t = counter_table(table)
        lo, hi = _bounds(from_ts, to_ts)
        where = ["bucket BETWEEN ? AND ?"]
        params: list = [lo, hi]

        only = sorted(set(identities or ()))
        if only:
            where.append(f"identity IN ({','.join('?' for _ in only)})")
            params.extend(only)
        skip = sorted(set(exclude))
        if skip:
            where.append(f"identity NOT IN ({','.join('?' for _ in skip)})")
            params.extend(skip)

        sql = (
            f"SELECT identity, SUM(count) AS total FROM {t} "
            f"WHERE {' AND '.join(where)} "
            "GROUP BY identity ORDER BY total DESC, identity ASC"
        )
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        return [(str(r[0]), int(r[1])) for r in self.db.query(sql, params)]

    def total_in_range(
        self, table: str, from_ts: float, to_ts: float, *, exclude: Iterable[str] = ()
    ) -> int:
        t = counter_table(table)
        lo, hi = _bounds(from_ts, to_ts)
        skip = sorted(set(exclude))
        clause = f" AND identity NOT IN ({','.join('?' for _ in skip)})" if skip else ""
        row = self.db.query(
            f"SELECT COALESCE(SUM(count), 0) FROM {t} WHERE bucket BETWEEN ? AND ?{clause}",
            [lo, hi, *skip],
        )
        return int(row[0][0]) if row else 0

    def rows_in_range(self, table: str, from_ts: float, to_ts: float) -> List[CounterRow]:
        t = counter_table(table)
        lo, hi = _bounds(from_ts, to_ts)
        rows = self.db.query(
            f"SELECT identity, count, bucket FROM {t} WHERE bucket BETWEEN ? AND ?",
            (lo, hi),
        )
        return [CounterRow(str(r[0]), int(r[1]), int(r[2])) for r in rows]

    def rows_with_links(
        self, platform: Platform | str, activity: str, from_ts: float, to_ts: float
    ) -> List[LinkedCount]:
        """Per-bucket rows keyed by primary (game) identity.

        Game rows keep their identity and pick up the linked chat id. Chat rows
        are folded under the linked game id; unlinked chat ids stand alone.
        """
        t = counter_table(counter_table_for(platform, activity))
        lo, hi = _bounds(from_ts, to_ts)
        if Platform(platform) is Platform.GAME:
            sql = f"""
                SELECT t.identity, l.chat_id, t.count, t.bucket
                FROM {t} AS t
                LEFT JOIN links AS l ON (t.identity = l.game_id)
                WHERE t.bucket BETWEEN ? AND ?
            """
        else:
            sql = f"""
                SELECT COALESCE(l.game_id, t.identity),
                       CASE WHEN l.game_id IS NULL THEN NULL ELSE t.identity END,
                       t.count, t.bucket
                FROM {t} AS t
                LEFT JOIN links AS l ON (t.identity = l.chat_id)
                WHERE t.bucket BETWEEN ? AND ?
            """
        return [
            LinkedCount(str(r[0]), r[1], int(r[2]), int(r[3]))
            for r in self.db.query(sql, (lo, hi))
        ]

    def delete_older_than(self, con: sqlite3.Connection, table: str, cutoff: int) -> int:
        t = counter_table(table)
        return con.execute(f"DELETE FROM {t} WHERE bucket <= ?", (int(cutoff),)).rowcount

    # ---- legacy identifiers ----

    def legacy_identities(self, table: str, cutoff: int) -> Set[str]:
        t = counter_table(table)
        rows = self.db.query(
            f"""
            SELECT identity FROM {t}
            WHERE bucket > ? AND length(identity) < ?
            GROUP BY identity
            """,
            (int(cutoff), LEGACY_IDENTITY_MAX_LEN),
        )
        return {str(r[0]) for r in rows}

    def reassign(
        self, tables: Sequence[str], cutoff: int, pairs: Iterable[Tuple[str, str]]
    ) -> int:
        """Move rows newer than ``cutoff`` from old to new identifiers.

        A row landing on an existing ``(bucket, new)`` row is added into it, so
        the summed count never changes. Returns the number of rows moved.
        """
        checked = [counter_table(t) for t in tables]
        moved = 0
        with self.db.transaction(immediate=True) as con:
            for old, new in pairs:
                if old == new:
                    continue
                for t in checked:
                    con.execute(
                        f"""
                        INSERT INTO {t} (bucket, identity, count)
                        SELECT bucket, ?, count FROM {t}
                        WHERE identity = ? AND bucket > ?
                        ON CONFLICT(bucket, identity) DO UPDATE SET
                          count = count + excluded.count
                        """,
                        (new, old, int(cutoff)),
                    )
                    cur = con.execute(
                        f"DELETE FROM {t} WHERE identity = ? AND bucket > ?",
                        (old, int(cutoff)),
                    )
                    moved += max(cur.rowcount, 0)
        return moved
