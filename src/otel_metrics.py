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
Player gauges over OpenTelemetry.

Exposes ``sdtd.player.level``, ``sdtd.player.pos_x`` and ``sdtd.player.pos_y``
as observable gauges. Each point carries ``server``, ``steam_id`` and ``name``
attributes and reflects the last player list recorded for that server.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import structlog
from opentelemetry.metrics import CallbackOptions, Observation
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricReader, PeriodicExportingMetricReader

try:  # pragma: no cover - import wiring
    from .console_parser import PlayerRecord
    from .player_metrics import trim_platform_id
except ImportError:  # pragma: no cover - import wiring
    from console_parser import PlayerRecord  # type: ignore[no-redef]
    from player_metrics import trim_platform_id  # type: ignore[no-redef]

logger = structlog.get_logger()

METER_NAME = "sdtd"
DEFAULT_EXPORT_INTERVAL = 60.0

# (instrument name, description, value getter)
PLAYER_GAUGES: Tuple[Tuple[str, str, Callable[[PlayerRecord], float]], ...] = (
    ("sdtd.player.level", "Player level", lambda player: float(player.level)),
    ("sdtd.player.pos_x", "Player X position", lambda player: player.position.x),
    ("sdtd.player.pos_y", "Player Y position", lambda player: player.position.y),
)


def build_otlp_reader(export_interval: float = DEFAULT_EXPORT_INTERVAL) -> MetricReader:
    """
    Periodic reader pushing to an OTLP/HTTP collector.

    The endpoint, headers and protocol options come from the standard
    ``OTEL_EXPORTER_OTLP_*`` environment variables.
    """
    from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter

    return PeriodicExportingMetricReader(
        OTLPMetricExporter(),
        export_interval_millis=export_interval * 1000,
    )


class PlayerGauges:
    """Observable player gauges, one series per server and player."""

    def __init__(self, reader: Optional[MetricReader] = None) -> None:
        self.reader = reader if reader is not None else build_otlp_reader()
        self.provider = MeterProvider(metric_readers=[self.reader])
        self._players: Dict[str, List[PlayerRecord]] = {}

        meter = self.provider.get_meter(METER_NAME)
        for name, description, getter in PLAYER_GAUGES:
            meter.create_observable_gauge(
                name,
                callbacks=[self._callback(getter)],
                description=description,
            )

    def record(self, server: str, players: Sequence[PlayerRecord]) -> None:
        """Replace the players observed for ``server``."""
        self._players[server] = list(players)
        logger.debug("otel_players_recorded", server=server, players=len(players))

    def _callback(
        self, getter: Callable[[PlayerRecord], float]
    ) -> Callable[[CallbackOptions], Iterable[Observation]]:
        def observe(options: CallbackOptions) -> Iterable[Observation]:
            for server, players in self._players.items():
                for player in players:
                    yield Observation(
                        getter(player),
                        {
                            "server": server,
                            "steam_id": trim_platform_id(player.pltfmid),
                            "name": player.name,
                        },
                    )

        return observe

    def shutdown(self) -> None:
        """Flush pending points and stop the reader."""
        try:
            self.provider.shutdown()
        except Exception as e:
            logger.warning("otel_shutdown_failed", error=str(e))
