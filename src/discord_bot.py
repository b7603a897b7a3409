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

"""Discord presence bot.

A plain discord.Client (no slash commands) whose only job is running the
PresenceManager: game clock as nickname, player count as activity.
"""

import asyncio
from typing import Optional

import discord
import structlog

try:
    from bot import PresenceManager
    from bot.helpers import StatusProvider
except ImportError:
    from src.bot import PresenceManager  # type: ignore
    from src.bot.helpers import StatusProvider  # type: ignore

logger = structlog.get_logger()

CONNECT_TIMEOUT = 30.0


class PresenceBot(discord.Client):
    """Discord client that keeps its presence in sync with the game server."""

    def __init__(
        self,
        token: str,
        status_provider: StatusProvider,
        *,
        guild_id: Optional[int] = None,
        status_channel_id: Optional[int] = None,
        interval: float = 30.0,
        intents: Optional[discord.Intents] = None,
    ):
        """
        Initialize the bot.

        Args:
            token: Discord bot token
            status_provider: Coroutine function returning a GameStatus
            guild_id: Guild whose bot nickname shows the game clock
            status_channel_id: Channel whose topic lists online players
            interval: Seconds between presence refreshes
            intents: Discord intents (guilds only if None)
        """
        if intents is None:
            intents = discord.Intents.default()
            intents.guilds = True

        super().__init__(intents=intents)

        self.token = token
        self._ready = asyncio.Event()
        self._connected = False
        self._connection_task: Optional[asyncio.Task] = None

        self.presence_manager = PresenceManager(
            bot=self,
            status_provider=status_provider,
            guild_id=guild_id,
            status_channel_id=status_channel_id,
            interval=interval,
        )

        logger.info(
            "presence_bot_initialized",
            guild_id=guild_id,
            status_channel_id=status_channel_id,
            interval=interval,
        )

    async def on_ready(self) -> None:
        """Called when bot is ready (fires on initial connect AND reconnects)."""
        if self.user is None:
            logger.error("discord_bot_ready_but_no_user")
            return

        logger.info(
            "discord_bot_ready",
            bot_name=self.user.name,
            bot_id=self.user.id,
            guilds=len(self.guilds),
        )

        self._connected = True
        self._ready.set()

        # Restart the updater after reconnects
        await self.presence_manager.start()

    async def on_disconnect(self) -> None:
        """Called when bot disconnects."""
        self._connected = False
        logger.warning("discord_bot_disconnected")

    async def connect_bot(self) -> None:
        """Log in, connect, and wait until Discord reports ready."""
        try:
            logger.info("connecting_to_discord")
            await self.login(self.token)
            self._connection_task = asyncio.create_task(self.connect())

            try:
                await asyncio.wait_for(self._ready.wait(), timeout=CONNECT_TIMEOUT)
            except asyncio.TimeoutError:
                logger.error("discord_bot_connection_timeout")
                await self._cancel_connection_task()
                raise ConnectionError(
                    f"Discord bot connection timed out after {CONNECT_TIMEOUT:.0f} seconds"
                )

            logger.info("discord_bot_connected")
        except discord.errors.LoginFailure as e:
            logger.error("discord_login_failed", error=str(e))
            raise ConnectionError(f"Discord login failed: {e}")

    async def disconnect_bot(self) -> None:
        """Stop the presence updater and disconnect from Discord."""
        self._connected = False
        await self.presence_manager.stop()
        await self._cancel_connection_task()

        if not self.is_closed():
            await self.close()

        logger.info("discord_bot_disconnected_cleanly")

    async def _cancel_connection_task(self) -> None:
        if self._connection_task is None:
            return

        if not self._connection_task.done():
            self._connection_task.cancel()
            try:
                await self._connection_task
            except asyncio.CancelledError:
                pass
        self._connection_task = None
