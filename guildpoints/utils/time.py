from __future__ import annotations
import math
import time
from datetime import datetime, timezone
from typing import Callable

from dateutil.relativedelta import relativedelta

from ..config import TZ

# Counter writes are coalesced into one row per identity per minute.
BUCKET_SECONDS = 60

DAY = 24 * 60 * 60

Clock = Callable[[], float]


def system_clock() -> float:
    return time.time()


def to_iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=TZ).isoformat(timespec="seconds")


def bucket_of(ts: float, size: int = BUCKET_SECONDS) -> int:
    return int(math.floor(ts / size)) * size


def years_before(ts: float, years: int) -> int:
    """Calendar-aware ``ts - N years`` (Feb 29 falls back to Feb 28)."""
    dt = datetime.fromtimestamp(int(ts), tz=timezone.utc) - relativedelta(years=years)
    return int(dt.timestamp())
