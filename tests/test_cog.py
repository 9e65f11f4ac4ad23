from __future__ import annotations

import logging
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from conftest import T0
from guildpoints.cogs.scores import ScoresCog
from guildpoints.utils.background import BackgroundTasks

WHEN = datetime.fromtimestamp(T0 + 30, tz=timezone.utc)


def _author(user_id=42, bot=False):
    return SimpleNamespace(id=user_id, bot=bot)


@pytest.fixture
def cog(manager):
    bot = SimpleNamespace(user=SimpleNamespace(id=999))
    return ScoresCog(bot, manager, background=BackgroundTasks())


def _rows(manager, table):
    return [(r.identity, r.count, r.bucket) for r in manager.counters.rows_in_range(table, 0, T0 * 2)]


async def test_guild_message_is_recorded(cog, manager):
    message = SimpleNamespace(guild=object(), author=_author(), created_at=WHEN)
    await cog.on_message(message)
    await cog.background.drain()

    assert _rows(manager, "discord_messages") == [("42", 1, T0)]
    assert len(cog.background) == 0


async def test_bot_and_direct_messages_are_ignored(cog, manager):
    await cog.on_message(SimpleNamespace(guild=object(), author=_author(bot=True), created_at=WHEN))
    await cog.on_message(SimpleNamespace(guild=None, author=_author(), created_at=WHEN))
    await cog.background.drain()

    assert _rows(manager, "discord_messages") == []


async def test_commands_are_recorded(cog, manager):
    ctx = SimpleNamespace(guild=object(), author=_author(7), message=SimpleNamespace(created_at=WHEN))
    interaction = SimpleNamespace(guild=object(), user=_author(7), created_at=WHEN)

    await cog.on_command_completion(ctx)
    await cog.on_app_command_completion(interaction, None)
    await cog.background.drain()

    assert _rows(manager, "discord_commands") == [("7", 2, T0)]


async def test_ready_registers_own_account_as_automation(cog, manager):
    await cog.on_ready()
    await cog.background.drain()

    assert manager.bots.list_known_automation_identities() == {"999"}


async def test_failed_write_is_logged(cog, manager, monkeypatch, caplog):
    def _broken(*args):
        raise RuntimeError("boom")

    monkeypatch.setattr(manager, "record_message", _broken)
    with caplog.at_level(logging.ERROR, logger="guildpoints.utils.background"):
        await cog.on_message(SimpleNamespace(guild=object(), author=_author(), created_at=WHEN))
        await cog.background.drain()

    assert "background.record_message failed" in caplog.text


async def test_each_cog_tracks_its_own_pending_writes(manager):
    bot = SimpleNamespace(user=SimpleNamespace(id=999))
    first, second = ScoresCog(bot, manager), ScoresCog(bot, manager)
    assert first.background is not second.background

    await first.on_message(SimpleNamespace(guild=object(), author=_author(), created_at=WHEN))
    assert len(first.background) == 1
    assert len(second.background) == 0
    await first.background.drain()
