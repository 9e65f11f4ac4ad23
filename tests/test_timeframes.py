from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from guildpoints.models.common import Timeframe
from guildpoints.models.links import IdentityLinker
from guildpoints.models.timeframes import TimeframeStore

TABLE = "online_members"


@pytest.fixture
def store(db) -> TimeframeStore:
    return TimeframeStore(db)


def _spans(store, identity="A"):
    return [(f.from_ts, f.to_ts) for f in store.rows_for(TABLE, identity)]


def test_same_interval_twice_keeps_one_row(store):
    store.consolidate_append(TABLE, "A", 100, 200, 0)
    store.consolidate_append(TABLE, "A", 100, 200, 0)
    assert _spans(store) == [(100, 200)]


def test_intervals_within_leniency_merge(store):
    store.consolidate_append(TABLE, "A", 0, 10, 5)
    store.consolidate_append(TABLE, "A", 15, 20, 5)
    assert _spans(store) == [(0, 20)]

    store.consolidate_append(TABLE, "A", -5, -5, 5)
    assert _spans(store) == [(-5, 20)]


def test_intervals_beyond_leniency_stay_apart(store):
    store.consolidate_append(TABLE, "A", 0, 10, 5)
    store.consolidate_append(TABLE, "A", 16, 20, 5)
    assert _spans(store) == [(0, 10), (16, 20)]


def test_bridging_interval_merges_all_neighbours(store):
    store.consolidate_append(TABLE, "A", 0, 10, 0)
    store.consolidate_append(TABLE, "A", 30, 40, 0)
    store.consolidate_append(TABLE, "A", 10, 30, 0)
    assert _spans(store) == [(0, 40)]


def test_interval_inside_stored_row_is_absorbed(store):
    store.consolidate_append(TABLE, "A", 0, 100, 0)
    store.consolidate_append(TABLE, "A", 10, 20, 0)
    assert _spans(store) == [(0, 100)]


def test_other_identities_are_untouched(store):
    store.consolidate_append(TABLE, "A", 0, 10, 300)
    store.consolidate_append(TABLE, "B", 5, 15, 300)
    assert _spans(store, "A") == [(0, 10)]
    assert _spans(store, "B") == [(5, 15)]


def test_reversed_interval_is_rejected(store):
    with pytest.raises(ValueError):
        store.consolidate_append(TABLE, "A", 20, 10, 0)
    assert _spans(store) == []


def test_batch_append_polling_snapshots(store):
    snapshots = [Timeframe("A", t, t, 300) for t in range(0, 3000, 60)]
    assert store.append_many(TABLE, snapshots) == len(snapshots)
    assert _spans(store) == [(0, 2940)]


def test_concurrent_appends_for_one_identity(store):
    def _append(start):
        store.consolidate_append(TABLE, "A", start, start + 10, 0)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(_append, range(0, 45, 5)))

    assert _spans(store) == [(0, 50)]


def test_sum_duration_clips_to_range(store, db):
    IdentityLinker(db).add_link("A", "chat-a")
    store.consolidate_append(TABLE, "A", 0, 100, 0)
    store.consolidate_append(TABLE, "A", 140, 300, 0)
    store.consolidate_append(TABLE, "B", 60, 70, 0)
    store.consolidate_append(TABLE, "C", 0, 1000, 0)

    result = store.sum_duration(TABLE, {"C"}, 50, 150)
    assert [(d.identity, d.linked_identity, d.total_seconds) for d in result] == [
        ("A", "chat-a", 60),
        ("B", None, 10),
    ]


def test_sum_duration_counts_rows_spanning_the_range(store):
    store.consolidate_append(TABLE, "A", 0, 1000, 0)
    [entry] = store.sum_duration(TABLE, (), 100, 200)
    assert entry.total_seconds == 100


def test_sum_duration_needs_ordered_range(store):
    with pytest.raises(ValueError):
        store.sum_duration(TABLE, (), 10, 10)
