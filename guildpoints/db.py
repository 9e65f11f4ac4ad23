from __future__ import annotations

import os
import sqlite3
import logging
from contextlib import contextmanager
from typing import Iterator, Mapping, Optional, Sequence

from . import config
from .errors import StoreUnavailable

log = logging.getLogger("guildpoints.db")


# ----------------------------
# Schema
# ----------------------------
COUNTER_TABLES = (
    "discord_messages",
    "game_messages",
    "discord_commands",
    "game_commands",
)
TIMEFRAME_TABLES = ("all_members", "online_members")

_COUNTER_DDL = """
CREATE TABLE IF NOT EXISTS {table} (
    bucket   INTEGER NOT NULL,
    identity TEXT    NOT NULL,
    count    INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (bucket, identity)
)
"""

_TIMEFRAME_DDL = """
CREATE TABLE IF NOT EXISTS {table} (
    id       INTEGER PRIMARY KEY AUTOINCREMENT,
    identity TEXT    NOT NULL,
    from_ts  INTEGER NOT NULL,
    to_ts    INTEGER NOT NULL,
    CHECK (from_ts <= to_ts)
)
"""

# sqlite reports these for a busy writer or an unreachable file; everything
# else (syntax, missing table) is a programming error and propagates as-is.
_RETRYABLE_MARKERS = (
    "database is locked",
    "database table is locked",
    "unable to open database",
    "disk i/o error",
)


def counter_table(name: str) -> str:
    """Canonical table name; enum members come back as their plain value."""
    if name not in COUNTER_TABLES:
        raise ValueError(f"unknown counter table: {name!r}")
    return COUNTER_TABLES[COUNTER_TABLES.index(name)]


def timeframe_table(name: str) -> str:
    if name not in TIMEFRAME_TABLES:
        raise ValueError(f"unknown timeframe table: {name!r}")
    return TIMEFRAME_TABLES[TIMEFRAME_TABLES.index(name)]


# ----------------------------
# Helpers
# ----------------------------
def _resolved_db_path() -> str:
    env = os.environ.get("BOT_DB_PATH")
    if env:
        return os.path.abspath(env)
    return os.path.abspath(config.BOT_DB_PATH)


def _table_exists(con: sqlite3.Connection, name: str) -> bool:
    row = con.execute(
        "SELECT 1 FROM sqlite_master WHERE type='table' AND name=? LIMIT 1", (name,)
    ).fetchone()
    return bool(row)


def _any_rows(con: sqlite3.Connection, table: str) -> bool:
    if not _table_exists(con, table):
        return False
    try:
        return bool(con.execute(f"SELECT 1 FROM {table} LIMIT 1").fetchone())
    except sqlite3.Error:
        return False


def _is_fresh_db(path: str) -> bool:
    if not os.path.exists(path):
        return True
    try:
        con = sqlite3.connect(path, timeout=5)
        try:
            return not any(_any_rows(con, t) for t in ("links",) + COUNTER_TABLES)
        finally:
            con.close()
    except sqlite3.Error:
        return True


@contextmanager
def store_errors() -> Iterator[None]:
    """Translate transient sqlite failures into :class:`StoreUnavailable`."""
    try:
        yield
    except sqlite3.OperationalError as e:
        msg = str(e).lower()
        if any(marker in msg for marker in _RETRYABLE_MARKERS):
            raise StoreUnavailable(str(e)) from e
        raise


# ----------------------------
# Database handle
# ----------------------------
class Database:
    """One sqlite file. Every call opens its own short-lived connection."""

    def __init__(
        self,
        path: Optional[str] = None,
        *,
        timeout: float = 5.0,
        require_persistence: Optional[bool] = None,
    ) -> None:
        self.path = os.path.abspath(path) if path else _resolved_db_path()
        self.timeout = timeout
        if require_persistence is None:
            require_persistence = os.getenv("DB_REQUIRE_PERSISTENCE") == "1"
        self.require_persistence = require_persistence

    def connect(self) -> sqlite3.Connection:
        if self.require_persistence and _is_fresh_db(self.path):
            raise RuntimeError(
                f"Refusing to start on fresh DB: {self.path}. "
                "Set BOT_DB_PATH to a persistent location (e.g. a Docker volume) "
                "or unset DB_REQUIRE_PERSISTENCE."
            )

        with store_errors():
            # Autocommit mode; transactions are opened explicitly below.
            con = sqlite3.connect(self.path, timeout=self.timeout, isolation_level=None)
            con.execute("PRAGMA foreign_keys=ON")
            con.execute("PRAGMA journal_mode=WAL")
            con.execute("PRAGMA synchronous=NORMAL")
            con.execute(f"PRAGMA busy_timeout={int(self.timeout * 1000)}")
        return con

    @contextmanager
    def transaction(self, *, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Run the block as one unit of work.

        ``immediate=True`` takes the write lock up front, so a read followed by
        a dependent write cannot interleave with another writer.
        """
        with store_errors():
            con = self.connect()
            try:
                con.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
                try:
                    yield con
                except BaseException:
                    if con.in_transaction:
                        con.execute("ROLLBACK")
                    raise
                con.execute("COMMIT")
            finally:
                con.close()

    def execute(self, sql: str, params: Sequence | Mapping = ()) -> int:
        """Single statement in its own transaction; returns rows changed."""
        with self.transaction() as con:
            return con.execute(sql, params).rowcount

    def query(self, sql: str, params: Sequence | Mapping = ()) -> list[tuple]:
        with self.transaction() as con:
            return con.execute(sql, params).fetchall()

    def ensure_db(self) -> None:
        """Idempotently create every table and index the engine uses."""
        os.makedirs(os.path.dirname(self.path), exist_ok=True)

        with self.transaction(immediate=True) as con:
            journal = con.execute("PRAGMA journal_mode").fetchone()[0]
            for table in COUNTER_TABLES:
                con.execute(_COUNTER_DDL.format(table=table))
                con.execute(
                    f"CREATE INDEX IF NOT EXISTS idx_{table}_identity ON {table} (identity, bucket)"
                )
            for table in TIMEFRAME_TABLES:
                con.execute(_TIMEFRAME_DDL.format(table=table))
                con.execute(
                    f"CREATE INDEX IF NOT EXISTS idx_{table}_append ON {table} (identity, from_ts, to_ts)"
                )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS links (
                    game_id    TEXT    NOT NULL,
                    chat_id    TEXT    NOT NULL,
                    created_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s','now') AS INTEGER)),
                    PRIMARY KEY (game_id, chat_id)
                )
                """
            )
            con.execute("CREATE INDEX IF NOT EXISTS idx_links_chat ON links (chat_id)")

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS automation_identities (
                    identity   TEXT    PRIMARY KEY NOT NULL,
                    updated_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s','now') AS INTEGER)),
                    created_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s','now') AS INTEGER))
                )
                """
            )

        try:
            size = os.stat(self.path).st_size
        except FileNotFoundError:
            size = 0
        log.info("db.open path=%s size=%d journal=%s", self.path, size, journal)
