from __future__ import annotations

import logging
import time
from typing import Optional, Set

from ..db import Database

log = logging.getLogger(__name__)


class IdentityLinker:
    """Verified game <-> chat account links.

    The verification workflow that creates links lives elsewhere; the scoring
    engine only reads them. ``add_link`` keeps at most one live link per side.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    def lookup_by_game(self, game_id: str) -> Optional[str]:
        rows = self.db.query(
            "SELECT chat_id FROM links WHERE game_id = ? LIMIT 1", (game_id,)
        )
        return str(rows[0][0]) if rows else None

    def lookup_by_chat(self, chat_id: str) -> Optional[str]:
        rows = self.db.query(
            "SELECT game_id FROM links WHERE chat_id = ? LIMIT 1", (chat_id,)
        )
        return str(rows[0][0]) if rows else None

    def add_link(self, game_id: str, chat_id: str) -> None:
        with self.db.transaction(immediate=True) as con:
            con.execute(
                "DELETE FROM links WHERE game_id = ? OR chat_id = ?", (game_id, chat_id)
            )
            con.execute(
                "INSERT INTO links (game_id, chat_id) VALUES (?, ?)", (game_id, chat_id)
            )
        log.debug("links.add game=%s chat=%s", game_id, chat_id)

    def invalidate(self, *, game_id: Optional[str] = None, chat_id: Optional[str] = None) -> int:
        if game_id is None and chat_id is None:
            raise ValueError("need game_id or chat_id")
        count = 0
        if game_id is not None:
            count += self.db.execute("DELETE FROM links WHERE game_id = ?", (game_id,))
        if chat_id is not None:
            count += self.db.execute("DELETE FROM links WHERE chat_id = ?", (chat_id,))
        return count


class BotRegistry:
    """Identities known to belong to automation accounts (never ranked)."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def add(self, identity: str, *, now: Optional[float] = None) -> None:
        ts = int(now if now is not None else time.time())
        self.db.execute(
            """
            INSERT INTO automation_identities (identity, updated_at, created_at)
            VALUES (?, ?, ?)
            ON CONFLICT(identity) DO UPDATE SET
              updated_at = excluded.updated_at
            """,
            (identity, ts, ts),
        )

    def list_known_automation_identities(self) -> Set[str]:
        return {str(r[0]) for r in self.db.query("SELECT identity FROM automation_identities")}
