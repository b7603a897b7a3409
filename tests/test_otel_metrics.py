
"""Tests for otel_metrics: player gauges read through an in-memory reader."""

from __future__ import annotations

from typing import Dict, Tuple
from unittest.mock import patch

import pytest
from opentelemetry.sdk.metrics.export import InMemoryMetricReader, PeriodicExportingMetricReader

import otel_metrics
from console_parser import PlayerRecord, Position
from otel_metrics import PlayerGauges, build_otlp_reader

ALICE = PlayerRecord(
    id=1, name="Alice Smith", position=Position(10.0, 20.0, 30.0), level=12, pltfmid="Steam_111"
)
BOB = PlayerRecord(id=2, name="Bob", position=Position(-1.5, 0.0, 2.0), level=3, pltfmid="EOS_222")


def collect(reader: InMemoryMetricReader) -> Dict[Tuple[str, str, str], float]:
    """(metric name, server, steam_id) -> value for every exported point."""
    points: Dict[Tuple[str, str, str], float] = {}
    data = reader.get_metrics_data()
    if data is None:
        return points
    for resource_metrics in data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                for point in metric.data.data_points:
                    key = (metric.name, point.attributes["server"], point.attributes["steam_id"])
                    points[key] = point.value
    return points


@pytest.fixture
def reader() -> InMemoryMetricReader:
    return InMemoryMetricReader()


class TestPlayerGauges:

    def test_nothing_recorded_yields_no_points(self, reader):
        PlayerGauges(reader)
        assert collect(reader) == {}

    def test_level_and_position_per_player(self, reader):
        gauges = PlayerGauges(reader)

        gauges.record("pve", [ALICE, BOB])

        assert collect(reader) == {
            ("sdtd.player.level", "pve", "111"): 12.0,
            ("sdtd.player.pos_x", "pve", "111"): 10.0,
            ("sdtd.player.pos_y", "pve", "111"): 20.0,
            ("sdtd.player.level", "pve", "EOS_222"): 3.0,
            ("sdtd.player.pos_x", "pve", "EOS_222"): -1.5,
            ("sdtd.player.pos_y", "pve", "EOS_222"): 0.0,
        }

    def test_name_attribute(self, reader):
        gauges = PlayerGauges(reader)
        gauges.record("pve", [ALICE])

        data = reader.get_metrics_data()
        metric = data.resource_metrics[0].scope_metrics[0].metrics[0]
        assert dict(metric.data.data_points[0].attributes) == {
            "server": "pve",
            "steam_id": "111",
            "name": "Alice Smith",
        }

    def test_meter_name(self, reader):
        PlayerGauges(reader).record("pve", [ALICE])

        data = reader.get_metrics_data()
        assert data.resource_metrics[0].scope_metrics[0].scope.name == "sdtd"

    def test_latest_list_replaces_previous(self, reader):
        gauges = PlayerGauges(reader)

        gauges.record("pve", [ALICE, BOB])
        gauges.record("pve", [BOB])

        assert {key[2] for key in collect(reader)} == {"EOS_222"}

    def test_servers_kept_apart(self, reader):
        gauges = PlayerGauges(reader)

        gauges.record("pve", [ALICE])
        gauges.record("pvp", [ALICE])

        points = collect(reader)
        assert points[("sdtd.player.level", "pve", "111")] == 12.0
        assert points[("sdtd.player.level", "pvp", "111")] == 12.0

    def test_shutdown(self, reader):
        gauges = PlayerGauges(reader)
        gauges.shutdown()
        gauges.shutdown()


class TestBuildOtlpReader:

    def test_periodic_reader_with_interval(self):
        reader = build_otlp_reader(15)

        assert isinstance(reader, PeriodicExportingMetricReader)
        assert reader._export_interval_millis == 15000
        reader.shutdown()

    def test_default_reader_used_when_none_given(self, reader):
        with patch.object(otel_metrics, "build_otlp_reader", return_value=reader) as build:
            gauges = PlayerGauges()

        build.assert_called_once_with()
        assert gauges.reader is reader
