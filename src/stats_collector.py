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


"""
Periodic player polling over the telnet console.

ConsoleStatsCollector lists players on a fixed interval, hands the result to
the metrics publisher, and remembers the outcome of the last poll for the
health endpoint. A failed poll is logged and retried on the next tick.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog

logger = structlog.get_logger()


class ConsoleStatsCollector:
    """Poll one server's player list and publish metrics."""

    def __init__(
        self,
        client: Any,
        publisher: Optional[Any] = None,
        interval: int | float = 60,
    ) -> None:
        """
        Initialize stats collector.

        Args:
            client: TelnetClient for the server
            publisher: Optional PlayerMetricsPublisher (metrics skipped if None)
            interval: Seconds between polls
        """
        self.client = client
        self.publisher = publisher
        self.interval = interval

        self.running = False
        self.task: Optional[asyncio.Task[None]] = None

        self.last_poll: Optional[datetime] = None
        self.last_success: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.last_player_count: Optional[int] = None

        logger.info(
            "stats_collector_initialized",
            server=self.client.label,
            interval=interval,
            metrics_enabled=publisher is not None,
        )

    async def start(self) -> None:
        """Start periodic polling."""
        if self.running:
            logger.warning("stats_collector_already_running", server=self.client.label)
            return

        self.running = True
        self.task = asyncio.create_task(self._collection_loop())
        logger.info("stats_collector_started", server=self.client.label, interval=self.interval)

    async def stop(self) -> None:
        """Stop polling."""
        if not self.running:
            logger.debug("stats_collector_stop_called_but_not_running")
            return

        self.running = False
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                logger.debug("stats_collector_task_cancelled")
            self.task = None

        logger.info("stats_collector_stopped", server=self.client.label)

    async def _collection_loop(self) -> None:
        """Main polling loop."""
        logger.info("stats_collection_loop_started", server=self.client.label)
        iteration = 0

        while self.running:
            iteration += 1
            await self.collect_once()

            if self.running:
                await asyncio.sleep(self.interval)

        logger.info("stats_collection_loop_exited", total_iterations=iteration)

    async def collect_once(self) -> bool:
        """
        Run one poll.

        Returns:
            True if players were listed (and published, when enabled).
        """
        now = datetime.now(timezone.utc)
        self.last_poll = now
        try:
            players = await self.client.list_players()
            self.last_player_count = len(players)

            if self.publisher is not None:
                await self.publisher.publish(players, now)

            self.last_success = now
            self.last_error = None
            logger.info(
                "players_polled",
                server=self.client.label,
                player_count=len(players),
            )
            return True
        except Exception as e:
            self.last_error = str(e)
            logger.error(
                "stats_collection_error",
                server=self.client.label,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    def status(self) -> Dict[str, Any]:
        """Summary of the last poll for health reporting."""
        return {
            "running": self.running,
            "last_poll": self.last_poll.isoformat() if self.last_poll else None,
            "last_success": self.last_success.isoformat() if self.last_success else None,
            "last_error": self.last_error,
            "player_count": self.last_player_count,
        }
