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

"""Tests for config: servers.yml loading, env/secret lookup, validation."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

import config
from config import (
    Config,
    ServerConfig,
    get_config_value,
    load_config,
    validate_config,
    _safe_bool,
    _safe_int,
)

ENV_VARS = [
    "CONFIG_DIR",
    "STATE_DIR",
    "MACKEREL_API_KEY",
    "METRICS_DRY_RUN",
    "OTEL_METRICS_ENABLED",
    "OTEL_EXPORT_INTERVAL",
    "DISCORD_BOT_TOKEN",
    "DISCORD_GUILD_ID",
    "STATUS_CHANNEL_ID",
    "PRESENCE_SERVER",
    "PRESENCE_INTERVAL",
    "HEALTH_CHECK_HOST",
    "HEALTH_CHECK_PORT",
    "LOG_LEVEL",
    "LOG_FORMAT",
    "TELNET_PASSWORD_MAIN",
    "TELNET_PASSWORD_PVP",
]

SERVERS_YML = """
servers:
  main:
    name: Main PvE
    telnet_host: 10.0.0.2
    telnet_port: 8081
    telnet_password: ${SDTD_TEST_PASSWORD}
    mackerel_host_id: abc123
  pvp:
    name: PvP
    telnet_host: 10.0.0.3
    telnet_password: inline
    poll_interval: 15
    read_timeout: 2.5
"""


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """No ambient env vars or Docker secrets leak into tests."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    with patch.object(config, "_read_docker_secret", return_value=None):
        yield


@pytest.fixture
def config_dir(tmp_path: Path, monkeypatch) -> Path:
    (tmp_path / "servers.yml").write_text(SERVERS_YML)
    monkeypatch.setenv("CONFIG_DIR", str(tmp_path))
    monkeypatch.setenv("SDTD_TEST_PASSWORD", "from-env")
    return tmp_path


def make_server(**kwargs) -> ServerConfig:
    params = dict(
        name="Main",
        tag="main",
        telnet_host="localhost",
        telnet_port=8081,
        telnet_password="pw",
    )
    params.update(kwargs)
    return ServerConfig(**params)


# ============================================================================
# ServerConfig
# ============================================================================

class TestServerConfig:

    def test_defaults(self):
        server = make_server()
        assert server.connect_timeout == 10.0
        assert server.read_timeout == 10.0
        assert server.poll_interval == 60
        assert server.mackerel_host_id is None

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"tag": "bad-tag"},
            {"tag": ""},
            {"telnet_host": ""},
            {"telnet_port": 0},
            {"telnet_port": 70000},
            {"telnet_password": ""},
            {"read_timeout": 0},
            {"connect_timeout": -1},
            {"poll_interval": 0},
        ],
    )
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            make_server(**kwargs)

    def test_underscore_tag_allowed(self):
        assert make_server(tag="eu_west").tag == "eu_west"


# ============================================================================
# Config
# ============================================================================

class TestConfig:

    def test_requires_servers(self):
        with pytest.raises(ValueError, match="REQUIRED"):
            Config(servers={})

    def test_presence_tag_defaults_to_first_server(self):
        cfg = Config(servers={"a": make_server(tag="a"), "b": make_server(tag="b")})
        assert cfg.presence_tag == "a"

    def test_presence_server_must_exist(self):
        with pytest.raises(ValueError, match="presence_server"):
            Config(servers={"a": make_server(tag="a")}, presence_server="zzz")

    def test_invalid_log_level(self):
        with pytest.raises(ValueError, match="log_level"):
            Config(servers={"a": make_server(tag="a")}, log_level="loud")

    def test_invalid_log_format(self):
        with pytest.raises(ValueError, match="log_format"):
            Config(servers={"a": make_server(tag="a")}, log_format="xml")

    def test_invalid_presence_interval(self):
        with pytest.raises(ValueError, match="presence_interval"):
            Config(servers={"a": make_server(tag="a")}, presence_interval=0)

    def test_invalid_otel_export_interval(self):
        with pytest.raises(ValueError, match="otel_export_interval"):
            Config(servers={"a": make_server(tag="a")}, otel_export_interval=0)

    def test_state_dir_default(self):
        cfg = Config(servers={"a": make_server(tag="a")})
        assert "sdtd-monitor_" in cfg.state_dir.name


# ============================================================================
# Helpers
# ============================================================================

class TestHelpers:

    def test_get_config_value_env(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "debug")
        assert get_config_value("LOG_LEVEL") == "debug"

    def test_get_config_value_default(self):
        assert get_config_value("LOG_LEVEL", default="info") == "info"

    def test_get_config_value_required(self):
        with pytest.raises(ValueError, match="LOG_LEVEL"):
            get_config_value("LOG_LEVEL", required=True)

    def test_secret_wins_over_env(self, monkeypatch):
        monkeypatch.setenv("MACKEREL_API_KEY", "env-key")
        with patch.object(config, "_read_docker_secret", return_value="secret-key"):
            assert get_config_value("MACKEREL_API_KEY") == "secret-key"

    def test_safe_int(self):
        assert _safe_int("42", "x", 0) == 42
        assert _safe_int(None, "x", 7) == 7
        with pytest.raises(ValueError):
            _safe_int("forty", "x", 0)
        with pytest.raises(ValueError):
            _safe_int(True, "x", 0)

    @pytest.mark.parametrize("value,expected", [("true", True), ("1", True), ("no", False), ("", False)])
    def test_safe_bool(self, value, expected):
        assert _safe_bool(value, "x", False) is expected

    def test_safe_bool_invalid(self):
        with pytest.raises(ValueError):
            _safe_bool("maybe", "x", False)


# ============================================================================
# load_config
# ============================================================================

class TestLoadConfig:

    def test_loads_servers(self, config_dir):
        cfg = load_config()

        assert list(cfg.servers) == ["main", "pvp"]
        main = cfg.servers["main"]
        assert main.name == "Main PvE"
        assert main.telnet_host == "10.0.0.2"
        assert main.telnet_password == "from-env"
        assert main.mackerel_host_id == "abc123"
        assert cfg.otel_metrics_enabled is False

        pvp = cfg.servers["pvp"]
        assert pvp.telnet_port == 8081
        assert pvp.poll_interval == 15
        assert pvp.read_timeout == 2.5
        assert pvp.mackerel_host_id is None

    def test_password_env_override(self, config_dir, monkeypatch):
        monkeypatch.setenv("TELNET_PASSWORD_PVP", "override")
        cfg = load_config()
        assert cfg.servers["pvp"].telnet_password == "override"

    def test_environment_settings(self, config_dir, monkeypatch, tmp_path):
        monkeypatch.setenv("MACKEREL_API_KEY", "key")
        monkeypatch.setenv("METRICS_DRY_RUN", "true")
        monkeypatch.setenv("STATE_DIR", str(tmp_path / "state"))
        monkeypatch.setenv("DISCORD_BOT_TOKEN", "token")
        monkeypatch.setenv("DISCORD_GUILD_ID", "1234")
        monkeypatch.setenv("STATUS_CHANNEL_ID", "5678")
        monkeypatch.setenv("PRESENCE_SERVER", "pvp")
        monkeypatch.setenv("PRESENCE_INTERVAL", "45")
        monkeypatch.setenv("HEALTH_CHECK_PORT", "9999")
        monkeypatch.setenv("LOG_FORMAT", "json")
        monkeypatch.setenv("OTEL_METRICS_ENABLED", "yes")
        monkeypatch.setenv("OTEL_EXPORT_INTERVAL", "15")

        cfg = load_config()

        assert cfg.mackerel_api_key == "key"
        assert cfg.metrics_dry_run is True
        assert cfg.state_dir == tmp_path / "state"
        assert cfg.discord_bot_token == "token"
        assert cfg.discord_guild_id == 1234
        assert cfg.status_channel_id == 5678
        assert cfg.presence_tag == "pvp"
        assert cfg.presence_interval == 45
        assert cfg.health_check_port == 9999
        assert cfg.log_format == "json"
        assert cfg.otel_metrics_enabled is True
        assert cfg.otel_export_interval == 15.0

    def test_missing_servers_yml(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CONFIG_DIR", str(tmp_path))
        with pytest.raises(FileNotFoundError):
            load_config()

    def test_servers_key_required(self, tmp_path, monkeypatch):
        (tmp_path / "servers.yml").write_text("other: 1\n")
        monkeypatch.setenv("CONFIG_DIR", str(tmp_path))
        with pytest.raises(ValueError, match="servers"):
            load_config()

    def test_missing_password_rejected(self, tmp_path, monkeypatch):
        (tmp_path / "servers.yml").write_text(
            "servers:\n  main:\n    telnet_host: h\n"
        )
        monkeypatch.setenv("CONFIG_DIR", str(tmp_path))
        with pytest.raises(ValueError, match="password"):
            load_config()


# ============================================================================
# validate_config
# ============================================================================

class TestValidateConfig:

    def test_valid(self):
        assert validate_config(Config(servers={"main": make_server()})) is True

    def test_api_key_requires_host_ids(self):
        cfg = Config(servers={"main": make_server()}, mackerel_api_key="key")
        assert validate_config(cfg) is False

    def test_dry_run_does_not_need_host_ids(self):
        cfg = Config(
            servers={"main": make_server()},
            mackerel_api_key="key",
            metrics_dry_run=True,
        )
        assert validate_config(cfg) is True

    def test_bot_without_guild_is_allowed(self):
        cfg = Config(servers={"main": make_server()}, discord_bot_token="token")
        assert validate_config(cfg) is True
