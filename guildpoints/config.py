from __future__ import annotations
import os
from dateutil import tz

DATA_DIR = os.getenv("DATA_DIR", "./data")
os.makedirs(DATA_DIR, exist_ok=True)


TZ_NAME = os.getenv("TZ", "UTC")
TZ = tz.gettz(TZ_NAME)

BOT_DB_PATH = os.getenv("BOT_DB_PATH", os.path.join(DATA_DIR, "scores.sqlite3"))

# Leaderboards are recomputed at most once per TTL per window.
LEADERBOARD_CACHE_TTL_SEC = int(os.getenv("LEADERBOARD_CACHE_TTL_SEC", "60"))

# Presence/membership polling jitter absorbed when merging timeframes.
LENIENCY_SEC = int(os.getenv("LENIENCY_SEC", "300"))

MESSAGE_RETENTION_YEARS = int(os.getenv("MESSAGE_RETENTION_YEARS", "3"))
MEMBER_RETENTION_YEARS = int(os.getenv("MEMBER_RETENTION_YEARS", "3"))

CLEAN_INTERVAL_SEC = int(os.getenv("CLEAN_INTERVAL_SEC", str(3 * 60 * 60)))
MIGRATE_INTERVAL_SEC = int(os.getenv("MIGRATE_INTERVAL_SEC", str(30 * 60)))

# Runtime
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
DISCORD_TOKEN = os.getenv("DISCORD_TOKEN", "")
COMMAND_PREFIX = os.getenv("COMMAND_PREFIX", "!")
