"""Storage layer for the scoring engine."""

from . import common
from . import counters
from . import links
from . import timeframes

__all__ = [
    "common",
    "counters",
    "links",
    "timeframes",
]
