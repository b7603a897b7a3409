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
Player metrics for Mackerel.

Turns a player list into per-player time-series points (level, x, y) keyed by
platform id, registers graph definitions when the set of players changes, and
posts both to the Mackerel API. The same player list also feeds the
OpenTelemetry gauges in ``otel_metrics`` when those are enabled.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

import aiohttp
import structlog

try:  # pragma: no cover - import wiring
    from .console_parser import PlayerRecord
except ImportError:  # pragma: no cover - import wiring
    from console_parser import PlayerRecord  # type: ignore[no-redef]

if TYPE_CHECKING:  # pragma: no cover
    from otel_metrics import PlayerGauges

logger = structlog.get_logger()

MACKEREL_API_BASE = "https://api.mackerelio.com"
TSDB_PATH = "/api/v0/tsdb"
GRAPH_DEFS_PATH = "/api/v0/graph-defs/create"

STEAM_PREFIX = "Steam_"


class MetricsPostError(Exception):
    """Mackerel answered with a non-2xx status."""

    def __init__(self, url: str, status: int, body: str = "") -> None:
        self.url = url
        self.status = status
        self.body = body
        super().__init__(f"Received non-2xx response {status} from {url}")


@dataclass(frozen=True, slots=True)
class MetricValue:
    """One host metric point."""
    name: str
    time: int
    value: float

    def to_payload(self, host_id: str) -> Dict[str, Any]:
        return {"hostId": host_id, "name": self.name, "time": self.time, "value": self.value}


@dataclass(frozen=True, slots=True)
class MetricDetail:
    name: str
    display_name: str
    is_stacked: bool = False


@dataclass(frozen=True, slots=True)
class GraphDef:
    """Mackerel graph definition for one custom metric family."""
    name: str
    display_name: str
    unit: str
    metrics: List[MetricDetail] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "displayName": self.display_name,
            "unit": self.unit,
            "metrics": [
                {
                    "name": detail.name,
                    "displayName": detail.display_name,
                    "isStacked": detail.is_stacked,
                }
                for detail in self.metrics
            ],
        }


# (graph name suffix, display name, unit)
GRAPH_FAMILIES = (
    ("level", "Level", "integer"),
    ("x", "Position X", "float"),
    ("y", "Position Y", "float"),
    ("totalplaytime", "Play time", "seconds"),
)


def trim_platform_id(pltfmid: str) -> str:
    """Strip the ``Steam_`` prefix from a platform id."""
    if pltfmid.startswith(STEAM_PREFIX):
        return pltfmid[len(STEAM_PREFIX):]
    return pltfmid


def normalize_display_name(name: str) -> str:
    return name.replace(" ", "_")


def player_ids(players: Sequence[PlayerRecord]) -> List[str]:
    return [trim_platform_id(player.pltfmid) for player in players]


def build_metric_values(players: Sequence[PlayerRecord], now: datetime) -> List[MetricValue]:
    """Level and x/y position points for every player, stamped with ``now``."""
    timestamp = int(now.timestamp())
    values: List[MetricValue] = []
    for player in players:
        player_id = trim_platform_id(player.pltfmid)
        values.append(MetricValue(f"custom.player.level.{player_id}", timestamp, float(player.level)))
        values.append(MetricValue(f"custom.player.x.{player_id}", timestamp, player.position.x))
        values.append(MetricValue(f"custom.player.y.{player_id}", timestamp, player.position.y))
    return values


def build_graph_defs(players: Sequence[PlayerRecord]) -> List[GraphDef]:
    """One graph definition per player per metric family."""
    graph_defs: List[GraphDef] = []
    for player in players:
        player_id = trim_platform_id(player.pltfmid)
        display_name = normalize_display_name(player.name)
        for suffix, family_name, unit in GRAPH_FAMILIES:
            graph_defs.append(
                GraphDef(
                    name=f"custom.player.{suffix}",
                    display_name=family_name,
                    unit=unit,
                    metrics=[
                        MetricDetail(
                            name=f"custom.player.{suffix}.{player_id}",
                            display_name=display_name,
                        )
                    ],
                )
            )
    return graph_defs


class PlayerIdState:
    """Last seen player id list, persisted as JSON."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.ids: List[str] = []

    def load(self) -> List[str]:
        """Read the state file, creating an empty one if missing or unreadable."""
        try:
            with open(self.path) as f:
                data = json.load(f)
            self.ids = [str(item) for item in data] if isinstance(data, list) else []
        except (OSError, ValueError) as e:
            logger.info("player_state_created", path=str(self.path), reason=str(e))
            self.ids = []
            self.save()
        return self.ids

    def save(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w") as f:
                json.dump(self.ids, f)
        except OSError as e:
            logger.warning("player_state_save_failed", path=str(self.path), error=str(e))

    def update(self, ids: List[str]) -> bool:
        """Store ``ids``; return True if they differ from the previous list."""
        if ids == self.ids:
            return False
        self.ids = list(ids)
        self.save()
        return True


class MackerelExporter:
    """Post graph definitions and host metrics to Mackerel."""

    def __init__(
        self,
        api_key: str,
        dry_run: bool = False,
        base_url: str = MACKEREL_API_BASE,
        timeout: float = 10.0,
    ) -> None:
        self.api_key = api_key
        self.dry_run = dry_run
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None

    async def connect(self) -> None:
        """Initialize HTTP session."""
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )

    async def close(self) -> None:
        """Close HTTP session."""
        if self.session is not None:
            await self.session.close()
            self.session = None

    async def post_graph_defs(self, graph_defs: Sequence[GraphDef]) -> None:
        await self._post(GRAPH_DEFS_PATH, [graph_def.to_payload() for graph_def in graph_defs])

    async def post_metric_values(self, host_id: str, values: Sequence[MetricValue]) -> None:
        await self._post(TSDB_PATH, [value.to_payload(host_id) for value in values])

    async def _post(self, path: str, payload: Any) -> None:
        url = f"{self.base_url}{path}"
        if self.dry_run:
            logger.info("metrics_dry_run", url=url, payload=payload)
            return

        await self.connect()
        assert self.session is not None

        headers = {"Content-Type": "application/json", "X-Api-Key": self.api_key}
        async with self.session.post(url, json=payload, headers=headers) as response:
            if not 200 <= response.status < 300:
                body = await response.text()
                logger.error(
                    "metrics_post_failed",
                    url=url,
                    status=response.status,
                    error=body[:200],
                )
                raise MetricsPostError(url, response.status, body)

        logger.debug("metrics_posted", url=url, count=len(payload))


class PlayerMetricsPublisher:
    """Per-server glue: player list in, Mackerel and OpenTelemetry points out."""

    def __init__(
        self,
        exporter: Optional[MackerelExporter],
        host_id: str,
        state: PlayerIdState,
        gauges: Optional[PlayerGauges] = None,
        server_tag: Optional[str] = None,
    ) -> None:
        self.exporter = exporter
        self.host_id = host_id
        self.state = state
        self.gauges = gauges
        self.server_tag = server_tag or host_id

    async def publish(self, players: Sequence[PlayerRecord], now: datetime) -> List[MetricValue]:
        """
        Post metrics for ``players``.

        The OpenTelemetry gauges always track the latest list. Mackerel graph
        definitions are posted only when the ordered list of player ids
        differs from the last one stored, and the new list is stored only
        after that post succeeds.

        Returns:
            The metric values posted to Mackerel (empty when nobody is online
            or Mackerel is not configured).
        """
        if self.gauges is not None:
            self.gauges.record(self.server_tag, players)

        if self.exporter is None:
            return []

        ids = player_ids(players)
        if not ids:
            logger.debug("metrics_no_players_online", host_id=self.host_id)
            return []

        if ids != self.state.ids:
            logger.info("metrics_player_set_changed", host_id=self.host_id, players=len(ids))
            await self.exporter.post_graph_defs(build_graph_defs(players))
            self.state.update(ids)

        values = build_metric_values(players, now)
        await self.exporter.post_metric_values(self.host_id, values)
        logger.info("metrics_posted_for_players", host_id=self.host_id, values=len(values))
        return values
