# Copyright (c) 2025 SDTD Monitor contributors
#
# This file is part of SDTD Monitor.
#
# SDTD Monitor is dual-licensed:
#
# 1. GNU Affero General Public License v3.0 (AGPL-3.0)
#    See LICENSE file for full terms
#
# 2. Commercial License
#    For proprietary use without AGPL requirements
#    Contact the SDTD Monitor maintainers
#
# SPDX-License-Identifier: AGPL-3.0-only OR Commercial

"""Presence helpers for the Discord status bot.

The bot mirrors the game server in Discord: its nickname shows the in-game
clock, its activity shows the player count, and an optional status channel
topic lists who is online along with the next blood moon.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, List, Optional, Sequence
import discord
import structlog

logger = structlog.get_logger()

BLOOD_MOON_INTERVAL = 7
MAX_TOPIC_PLAYERS = 20
TOPIC_FIELD_LIMIT = 950
TOPIC_MIN_INTERVAL = 60.0
OFFLINE_STATUS_TEXT = "Server offline"

StatusProvider = Callable[[], Awaitable[Any]]


def format_clock_nickname(game_time: Any) -> str:
    """Bot nickname for a GameTime, e.g. ``Day17, 08:05``."""
    return f"Day{game_time.days}, {game_time.hours:02d}:{game_time.minutes:02d}"


def format_player_activity(count: int) -> str:
    return f"{count} player" if count == 1 else f"{count} players"


def blood_moon_tag(day: int) -> str:
    """
    Blood moon marker for the topic header.

    Blood moons fall on every 7th day. On such a day the tag announces
    tonight's horde, otherwise it counts down to the next one.
    """
    if day > 0 and day % BLOOD_MOON_INTERVAL == 0:
        return "[Blood Moon tonight]"

    if day <= 0:
        next_day = BLOOD_MOON_INTERVAL
    else:
        next_day = day + (BLOOD_MOON_INTERVAL - day % BLOOD_MOON_INTERVAL)
    return f"[Blood Moon in {next_day - day}d (Day {next_day})]"


def format_in_game_header(day: int, hour: int) -> str:
    return f"Day {day} {hour:02d}h {blood_moon_tag(day)}"


def join_with_limit(items: Sequence[str], limit: int) -> str:
    """
    Comma-join ``items``, ending with an ellipsis once ``limit`` characters
    would be exceeded.
    """
    out = ""
    for index, item in enumerate(items):
        if index > 0:
            if len(out) + 2 > limit:
                out += "…"
                break
            out += ", "
        if len(out) + len(item) > limit:
            out += "…"
            break
        out += item
    return out


def format_player_line(count: int, names: Sequence[str]) -> str:
    if count <= 0:
        return "No players online"
    if not names:
        return f"Players: {count}"
    shown: List[str] = list(names[:MAX_TOPIC_PLAYERS])
    return f"Players: {count} ({join_with_limit(shown, TOPIC_FIELD_LIMIT)})"


def build_channel_topic(status: Any) -> str:
    """Two-line channel topic: game clock header, then online players."""
    header = format_in_game_header(status.game_time.days, status.game_time.hours)
    return f"{header}\n{format_player_line(status.players, status.online)}"


class PresenceManager:
    """Mirror game status into the bot's Discord presence."""

    def __init__(
        self,
        bot: Any,
        status_provider: StatusProvider,
        guild_id: Optional[int] = None,
        status_channel_id: Optional[int] = None,
        interval: float = 30.0,
    ) -> None:
        """
        Initialize presence manager.

        Args:
            bot: PresenceBot instance
            status_provider: Coroutine function returning a GameStatus
            guild_id: Guild whose bot nickname shows the game clock
            status_channel_id: Channel whose topic lists online players
            interval: Seconds between updates
        """
        self.bot = bot
        self.status_provider = status_provider
        self.guild_id = guild_id
        self.status_channel_id = status_channel_id
        self.interval = interval

        self.last_topic: str = ""
        self.last_topic_at: float = 0.0
        self._presence_task: Optional[asyncio.Task] = None

    async def update(self) -> None:
        """Fetch game status once and push it to Discord."""
        if not self.bot._connected or self.bot.user is None:
            return

        try:
            status = await self.status_provider()
        except Exception as e:
            logger.warning("game_status_unavailable", error=str(e), error_type=type(e).__name__)
            await self._set_offline()
            return

        await self._set_nickname(status.game_time)
        await self._set_activity(status.players)
        if self.status_channel_id is not None:
            await self._update_topic(status)

    async def _set_offline(self) -> None:
        try:
            await self.bot.change_presence(
                status=discord.Status.idle,
                activity=discord.CustomActivity(name=OFFLINE_STATUS_TEXT),
            )
        except discord.DiscordException as e:
            logger.warning("presence_update_failed", error=str(e))

    async def _set_activity(self, player_count: int) -> None:
        text = format_player_activity(player_count)
        try:
            await self.bot.change_presence(
                status=discord.Status.online,
                activity=discord.Game(name=text),
            )
            logger.debug("presence_updated", activity=text)
        except discord.DiscordException as e:
            logger.warning("presence_update_failed", error=str(e))

    async def _set_nickname(self, game_time: Any) -> None:
        if self.guild_id is None:
            return

        guild = self.bot.get_guild(self.guild_id)
        if guild is None or guild.me is None:
            logger.warning("presence_guild_not_found", guild_id=self.guild_id)
            return

        nickname = format_clock_nickname(game_time)
        try:
            await guild.me.edit(nick=nickname)
            logger.debug("nickname_updated", nickname=nickname)
        except discord.DiscordException as e:
            logger.warning("nickname_update_failed", error=str(e))

    async def _update_topic(self, status: Any) -> None:
        if self.last_topic and time.monotonic() - self.last_topic_at < TOPIC_MIN_INTERVAL:
            return

        topic = build_channel_topic(status)
        if topic == self.last_topic:
            return

        channel = self.bot.get_channel(self.status_channel_id)
        if channel is None:
            logger.warning("status_channel_not_found", channel_id=self.status_channel_id)
            return

        try:
            await channel.edit(topic=topic)
        except discord.DiscordException as e:
            logger.warning("channel_topic_update_failed", error=str(e))
            return

        self.last_topic = topic
        self.last_topic_at = time.monotonic()
        logger.debug("channel_topic_updated", channel_id=self.status_channel_id)

    async def _update_presence_loop(self) -> None:
        """Refresh presence every ``interval`` seconds while connected."""
        logger.info("presence_update_loop_started", interval=self.interval)
        try:
            while self.bot._connected:
                await self.update()
                await asyncio.sleep(self.interval)
        except asyncio.CancelledError:
            logger.info("presence_update_loop_cancelled")
            raise
        except Exception as e:
            logger.error("presence_update_loop_error", error=str(e), exc_info=True)
        finally:
            logger.info("presence_update_loop_stopped")

    async def start(self) -> None:
        """Start the presence update loop if not already running."""
        if self._presence_task is None or self._presence_task.done():
            self._presence_task = asyncio.create_task(self._update_presence_loop())
            logger.info("presence_updater_started")
        else:
            logger.debug("presence_updater_already_running")

    async def stop(self) -> None:
        """Stop the presence update loop."""
        if self._presence_task:
            self._presence_task.cancel()
            try:
                await self._presence_task
            except asyncio.CancelledError:
                pass
            self._presence_task = None
            logger.info("presence_updater_stopped")
