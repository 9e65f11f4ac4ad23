from __future__ import annotations

import pytest

from guildpoints.db import Database
from guildpoints.scores import ScoresManager

# A whole minute, so recorded timestamps land on predictable buckets.
T0 = 1_699_999_980


class FakeClock:
    def __init__(self, now: float = T0) -> None:
        self.now = float(now)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def db(tmp_path) -> Database:
    database = Database(str(tmp_path / "scores.sqlite3"), require_persistence=False)
    database.ensure_db()
    return database


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def manager(db: Database, clock: FakeClock) -> ScoresManager:
    return ScoresManager(db, clock=clock, cache_ttl=60, leniency=300)
