from __future__ import annotations

import pytest

from guildpoints.errors import InvariantViolation
from guildpoints.models.common import Platform
from guildpoints.models.counters import CounterStore
from guildpoints.models.links import IdentityLinker


@pytest.fixture
def store(db) -> CounterStore:
    return CounterStore(db)


def test_increment_inserts_then_adds(store):
    store.increment("game_messages", "A", 60)
    store.increment("game_messages", "A", 60)
    store.increment("game_messages", "A", 120)

    rows = sorted(store.rows_in_range("game_messages", 0, 1000), key=lambda r: r.bucket)
    assert [(r.identity, r.count, r.bucket) for r in rows] == [("A", 2, 60), ("A", 1, 120)]


def test_increment_changing_nothing_is_fatal(store, monkeypatch):
    monkeypatch.setattr(store.db, "execute", lambda sql, params=(): 0)
    with pytest.raises(InvariantViolation):
        store.increment("game_messages", "A", 60)


def test_unknown_table_is_rejected(store):
    with pytest.raises(ValueError):
        store.increment("messages; DROP TABLE links", "A", 60)


def test_sum_in_range_floors_bounds_inclusively(store):
    for bucket in (0, 60, 120, 180):
        store.increment("discord_messages", "d1", bucket)
    store.increment("discord_messages", "d2", 60)

    assert store.sum_in_range("discord_messages", None, 0.5, 120.9) == [("d1", 3), ("d2", 1)]
    assert store.sum_in_range("discord_messages", [], 61, 180) == [("d1", 2)]
    assert store.sum_in_range("discord_messages", ["d2"], 0, 1000) == [("d2", 1)]


def test_total_in_range_excludes(store):
    store.increment("game_messages", "A", 60)
    store.increment("game_messages", "bot", 60)
    store.increment("game_messages", "bot", 60)

    assert store.total_in_range("game_messages", 0, 100) == 3
    assert store.total_in_range("game_messages", 0, 100, exclude={"bot"}) == 1


def test_rows_with_links_fold_chat_under_game_identity(store, db):
    IdentityLinker(db).add_link("game-a", "chat-a")
    store.increment("discord_messages", "chat-a", 60)
    store.increment("discord_messages", "chat-b", 60)
    store.increment("game_messages", "game-a", 120)

    chat = {(r.identity, r.linked_identity) for r in store.rows_with_links(Platform.DISCORD, "messages", 0, 200)}
    assert chat == {("game-a", "chat-a"), ("chat-b", None)}

    game = store.rows_with_links(Platform.GAME, "messages", 0, 200)
    assert [(r.identity, r.linked_identity, r.count) for r in game] == [("game-a", "chat-a", 1)]


def test_legacy_identities_are_short_and_recent(store):
    canonical = "0f3c6c1e9a7b4d2e8f5a6b7c8d9e0f1a"
    store.increment("game_messages", "Steve", 100)
    store.increment("game_messages", "Alex", 10)
    store.increment("game_messages", canonical, 100)

    assert store.legacy_identities("game_messages", 50) == {"Steve"}
