from __future__ import annotations

import asyncio
import logging
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands, tasks

from .. import config
from ..models.common import Platform
from ..scores import Resolver, ScoresManager
from ..utils.background import BackgroundTasks

log = logging.getLogger(__name__)


class ScoresCog(commands.Cog):
    """Feeds Discord chat and command activity into the scores engine.

    Also owns the periodic retention cleanup and, when the bot was given an
    identity resolver, the legacy identifier migration.
    """

    def __init__(
        self,
        bot: commands.Bot,
        manager: ScoresManager,
        *,
        resolver: Optional[Resolver] = None,
        background: Optional[BackgroundTasks] = None,
    ) -> None:
        self.bot = bot
        self.manager = manager
        self.resolver = resolver
        self.background = background if background is not None else BackgroundTasks()

    async def cog_load(self) -> None:
        self._clean_retention.start()
        if self.resolver is not None:
            self._migrate_legacy.start()

    def cog_unload(self) -> None:
        self._clean_retention.cancel()
        self._migrate_legacy.cancel()

    # ---- event adapters ----

    @commands.Cog.listener()
    async def on_ready(self) -> None:
        if self.bot.user is None:
            return
        self.background.spawn_in_thread(
            self.manager.register_automation_identity,
            str(self.bot.user.id),
            what="register_self",
        )

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        # public guild chat only; DMs and bots don't score
        if message.guild is None or message.author.bot:
            return
        self.background.spawn_in_thread(
            self.manager.record_message,
            Platform.DISCORD,
            str(message.author.id),
            message.created_at.timestamp(),
            what="record_message",
        )

    @commands.Cog.listener()
    async def on_command_completion(self, ctx: commands.Context) -> None:
        if ctx.guild is None or ctx.author.bot:
            return
        self.background.spawn_in_thread(
            self.manager.record_command,
            Platform.DISCORD,
            str(ctx.author.id),
            ctx.message.created_at.timestamp(),
            what="record_command",
        )

    @commands.Cog.listener()
    async def on_app_command_completion(
        self,
        interaction: discord.Interaction,
        command: app_commands.Command | app_commands.ContextMenu,
    ) -> None:
        if interaction.guild is None or interaction.user.bot:
            return
        self.background.spawn_in_thread(
            self.manager.record_command,
            Platform.DISCORD,
            str(interaction.user.id),
            interaction.created_at.timestamp(),
            what="record_command",
        )

    # ---- housekeeping ----

    @tasks.loop(seconds=config.CLEAN_INTERVAL_SEC)
    async def _clean_retention(self) -> None:
        try:
            removed = await asyncio.to_thread(self.manager.clean)
            log.debug("scores.clean tick removed=%d", removed)
        except Exception:
            # next tick retries; each table's delete is idempotent
            log.exception("scores.clean failed")

    @_clean_retention.before_loop
    async def _before_clean_retention(self) -> None:
        await self.bot.wait_until_ready()

    @tasks.loop(seconds=config.MIGRATE_INTERVAL_SEC)
    async def _migrate_legacy(self) -> None:
        if self.resolver is None:
            return
        try:
            changed = await asyncio.to_thread(self.manager.migrate_legacy, self.resolver)
            if changed:
                log.info("scores.migrate tick rows=%d", changed)
        except Exception:
            log.exception("scores.migrate failed")

    @_migrate_legacy.before_loop
    async def _before_migrate_legacy(self) -> None:
        await self.bot.wait_until_ready()


async def setup(bot: commands.Bot):
    manager = getattr(bot, "scores", None)
    if manager is None:
        raise RuntimeError("bot has no scores manager; construct it before loading this extension")
    cog = ScoresCog(
        bot,
        manager,
        resolver=getattr(bot, "identity_resolver", None),
        background=getattr(bot, "background", None),
    )
    await bot.add_cog(cog)
