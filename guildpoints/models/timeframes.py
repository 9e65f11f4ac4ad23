from __future__ import annotations

import logging
import math
import sqlite3
from typing import Iterable, List

from ..db import Database, timeframe_table
from .common import DurationEntry, LinkedTimeframe, Timeframe

log = logging.getLogger(__name__)


def _consolidate(con: sqlite3.Connection, table: str, entry: Timeframe) -> int:
    """Merge ``entry`` into whatever it touches. Returns the stored row id."""
    frm, to = int(math.floor(entry.from_ts)), int(math.floor(entry.to_ts))
    if frm > to:
        raise ValueError(f"timeframe starts after it ends: {frm} > {to}")
    params = {"identity": entry.identity, "frm": frm, "to": to, "len": int(entry.leniency)}

    existing = con.execute(
        f"""
        SELECT id, from_ts, to_ts FROM {table}
        WHERE identity = :identity
          AND (
            (from_ts > :to AND from_ts - :to <= :len) OR
            (to_ts < :frm AND :frm - to_ts <= :len) OR
            (from_ts BETWEEN :frm AND :to) OR
            (to_ts BETWEEN :frm AND :to) OR
            (from_ts <= :frm AND to_ts >= :to)
          )
        """,
        params,
    ).fetchall()

    if existing:
        ids = [int(r[0]) for r in existing]
        con.execute(
            f"DELETE FROM {table} WHERE id IN ({','.join('?' for _ in ids)})", ids
        )
        frm = min([frm] + [int(r[1]) for r in existing])
        to = max([to] + [int(r[2]) for r in existing])

    cur = con.execute(
        f"INSERT INTO {table} (identity, from_ts, to_ts) VALUES (?, ?, ?)",
        (entry.identity, frm, to),
    )
    return int(cur.lastrowid)


class TimeframeStore:
    """Per-identity intervals, consolidated on append.

    Polling snapshots arrive as many tiny, overlapping intervals; each append
    folds the new interval into every stored row it overlaps or sits within
    ``leniency`` seconds of, leaving one row for a continuous session.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    def consolidate_append(
        self, table: str, identity: str, from_ts: float, to_ts: float, leniency: int
    ) -> None:
        self.append_many(table, [Timeframe(identity, int(from_ts), int(to_ts), leniency)])

    def append_many(self, table: str, entries: Iterable[Timeframe]) -> int:
        t = timeframe_table(table)
        entries = list(entries)
        if not entries:
            return 0
        # Write lock held from the first SELECT so concurrent appends for the
        # same identity see each other's rows.
        with self.db.transaction(immediate=True) as con:
            for entry in entries:
                _consolidate(con, t, entry)
        log.debug("timeframes.append table=%s entries=%d", t, len(entries))
        return len(entries)

    def rows_for(self, table: str, identity: str) -> List[Timeframe]:
        t = timeframe_table(table)
        rows = self.db.query(
            f"SELECT identity, from_ts, to_ts FROM {t} WHERE identity = ? ORDER BY from_ts",
            (identity,),
        )
        return [Timeframe(str(r[0]), int(r[1]), int(r[2])) for r in rows]

    def rows_in_range(self, table: str, from_ts: float, to_ts: float) -> List[LinkedTimeframe]:
        """Rows intersecting ``[from, to]`` with their linked chat id, oldest first."""
        t = timeframe_table(table)
        rows = self.db.query(
            f"""
            SELECT t.identity, l.chat_id, t.from_ts, t.to_ts
            FROM {t} AS t
            LEFT JOIN links AS l ON (t.identity = l.game_id)
            WHERE t.from_ts <= :to AND t.to_ts >= :frm
            ORDER BY t.from_ts ASC, t.id ASC
            """,
            {"frm": int(math.floor(from_ts)), "to": int(math.floor(to_ts))},
        )
        return [LinkedTimeframe(str(r[0]), r[1], int(r[2]), int(r[3])) for r in rows]

    def sum_duration(
        self, table: str, exclude: Iterable[str], from_ts: float, to_ts: float
    ) -> List[DurationEntry]:
        t = timeframe_table(table)
        frm, to = int(math.floor(from_ts)), int(math.floor(to_ts))
        if frm >= to:
            raise ValueError('"from" timestamp must be earlier than the "to" timestamp')

        skip = sorted(set(exclude))
        clause = ""
        params: dict = {"frm": frm, "to": to}
        if skip:
            names = [f"x{i}" for i in range(len(skip))]
            clause = f" AND t.identity NOT IN ({','.join(':' + n for n in names)})"
            params.update(zip(names, skip))

        rows = self.db.query(
            f"""
            SELECT t.identity, l.chat_id,
                   SUM(MIN(:to, t.to_ts) - MAX(:frm, t.from_ts)) AS total
            FROM {t} AS t
            LEFT JOIN links AS l ON (t.identity = l.game_id)
            WHERE t.from_ts <= :to AND t.to_ts >= :frm{clause}
            GROUP BY t.identity, l.chat_id
            ORDER BY total DESC, t.identity ASC
            """,
            params,
        )
        return [DurationEntry(str(r[0]), r[1], int(r[2])) for r in rows]

    def delete_ended_before(self, con: sqlite3.Connection, table: str, cutoff: int) -> int:
        t = timeframe_table(table)
        return con.execute(f"DELETE FROM {t} WHERE to_ts <= ?", (int(cutoff),)).rowcount
