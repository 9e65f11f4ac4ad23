from __future__ import annotations

import sys
import asyncio
import logging
import signal
from contextlib import suppress
from typing import Iterable, Optional, Sequence

import discord
from discord.ext import commands

from . import config
from .db import Database
from .scores import Resolver, ScoresManager
from .utils.background import BackgroundTasks

# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------
logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    stream=sys.stdout,
)
log = logging.getLogger("guildpoints")


# -----------------------------------------------------------------------------
# Intents
# -----------------------------------------------------------------------------
def build_intents() -> discord.Intents:
    """Only activity metadata is needed; message content is never read."""
    intents = discord.Intents.default()
    intents.guilds = True
    intents.guild_messages = True
    intents.message_content = False
    return intents


# -----------------------------------------------------------------------------
# Bot
# -----------------------------------------------------------------------------
class PointsBot(commands.Bot):
    def __init__(
        self,
        db: Optional[Database] = None,
        *,
        identity_resolver: Optional[Resolver] = None,
    ) -> None:
        super().__init__(command_prefix=config.COMMAND_PREFIX, intents=build_intents())
        self.db = db or Database()
        self.scores = ScoresManager(self.db)
        self.identity_resolver = identity_resolver
        self.background = BackgroundTasks()
        self.stop_reason: str | None = None

    # ---- lifecycle ----
    async def setup_hook(self) -> None:
        await asyncio.to_thread(self.db.ensure_db)
        log.info("Database ensured/connected.")

        extensions: Sequence[str] = ("guildpoints.cogs.scores",)
        await self._load_extensions(extensions)

    async def _load_extensions(self, names: Iterable[str]) -> None:
        for ext in names:
            try:
                await self.load_extension(ext)
                log.info("Loaded extension: %s", ext)
            except Exception:
                log.exception("Failed to load extension: %s", ext)

    async def on_ready(self) -> None:
        if self.user:
            log.info("Logged in as %s (%s)", self.user, self.user.id)

    async def close(self) -> None:
        if self.is_closed():
            return
        log.info(
            "Closing (%s); %d score writes pending.",
            self.stop_reason or "requested",
            len(self.background),
        )
        try:
            await asyncio.wait_for(self.background.drain(), timeout=10)
        except asyncio.TimeoutError:
            log.warning("Pending score writes did not finish before shutdown.")
        await super().close()


# -----------------------------------------------------------------------------
# Runner
# -----------------------------------------------------------------------------
async def _serve(token: str) -> None:
    bot = PointsBot()
    loop = asyncio.get_running_loop()

    def _stop(signame: str) -> None:
        if bot.stop_reason is None:
            bot.stop_reason = signame
            loop.create_task(bot.close())

    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, _stop, sig.name)

    async with bot:
        await bot.start(token)


def main() -> None:
    if not config.DISCORD_TOKEN:
        log.error("Set DISCORD_TOKEN env var.")
        raise SystemExit(1)
    try:
        asyncio.run(_serve(config.DISCORD_TOKEN))
    except KeyboardInterrupt:
        log.warning("Interrupted, exiting.")
    log.info("Shutdown complete.")


if __name__ == "__main__":
    main()
