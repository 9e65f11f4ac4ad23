from __future__ import annotations

import sqlite3

import pytest

from guildpoints.db import Database, counter_table, timeframe_table
from guildpoints.errors import StoreUnavailable
from guildpoints.models.common import Membership


def test_table_names_are_plain_strings():
    name = timeframe_table(Membership.ONLINE)
    assert name == "online_members"
    assert type(name) is str
    assert type(counter_table("game_messages")) is str

    with pytest.raises(ValueError):
        timeframe_table("game_messages")
    with pytest.raises(ValueError):
        counter_table("online_members")


def test_locked_store_is_unavailable(db):
    holder = sqlite3.connect(db.path, isolation_level=None)
    try:
        holder.execute("BEGIN IMMEDIATE")
        impatient = Database(db.path, timeout=0.2, require_persistence=False)
        with pytest.raises(StoreUnavailable):
            impatient.execute(
                "INSERT INTO game_messages (bucket, identity, count) VALUES (?, ?, ?)",
                (60, "A", 1),
            )
    finally:
        holder.execute("ROLLBACK")
        holder.close()

    assert db.query("SELECT COUNT(*) FROM game_messages") == [(0,)]


def test_programming_errors_propagate_unchanged(db):
    with pytest.raises(sqlite3.OperationalError, match="no such table") as info:
        db.execute("INSERT INTO nowhere (identity) VALUES (?)", ("A",))
    assert not isinstance(info.value, StoreUnavailable)


def test_fresh_store_refused_when_persistence_required(tmp_path):
    database = Database(str(tmp_path / "new.sqlite3"), require_persistence=True)
    with pytest.raises(RuntimeError, match="fresh DB"):
        database.connect()
