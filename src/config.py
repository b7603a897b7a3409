# Copyright (c) 2025 SDTD Monitor contributors

# This file is part of SDTD Monitor.

# SDTD Monitor is dual-licensed:

# 1. GNU Affero General Public License v3.0 (AGPL-3.0)
#    See LICENSE file for full terms

# 2. Commercial License
#    For proprietary use without AGPL requirements
#    Contact the SDTD Monitor maintainers

# SPDX-License-Identifier: AGPL-3.0-only OR Commercial

"""
Configuration module for SDTD Monitor.

- servers.yml is MANDATORY (one entry per 7 Days to Die telnet console)
- Mackerel and Discord settings come from environment / Docker secrets
- OpenTelemetry export is switched on with OTEL_METRICS_ENABLED; the collector
  endpoint uses the standard OTEL_EXPORTER_OTLP_* variables
- Telnet passwords may be given inline, as ${VAR} references, or as
  TELNET_PASSWORD_<TAG> secrets/env vars
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any
import os
import re
import tempfile
import yaml
import structlog

logger = structlog.get_logger()

DEFAULT_TELNET_PORT = 8081
DEFAULT_TIMEOUT = 10.0
DEFAULT_POLL_INTERVAL = 60
DEFAULT_PRESENCE_INTERVAL = 30
DEFAULT_OTEL_EXPORT_INTERVAL = 60.0

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def _read_docker_secret(secret_name: str) -> Optional[str]:
    """
    Read a secret from the Docker secrets location.

    Args:
        secret_name: Name of the secret (e.g., 'telnet_password_main')

    Returns:
        Secret value, or None if the file is missing or unreadable
    """
    secret_path = Path(f"/run/secrets/{secret_name}")

    if secret_path.exists():
        try:
            return secret_path.read_text().strip()
        except (IOError, OSError) as e:
            logger.warning("docker_secret_read_error", secret=secret_name, error=str(e))
            return None

    return None


def get_config_value(
    env_var: str,
    secret_name: Optional[str] = None,
    required: bool = False,
    default: Optional[str] = None,
) -> Optional[str]:
    """
    Get a configuration value from Docker secrets or the environment.

    Tries in order:
    1. Docker secret file at /run/secrets/{secret_name}
    2. Environment variable {env_var}
    3. Default value if provided
    4. Raise error if required and not found

    Args:
        env_var: Environment variable name (e.g., 'MACKEREL_API_KEY')
        secret_name: Docker secret name. Defaults to env_var lowercased
        required: If True, raises ValueError when value not found
        default: Default value if not found in env or secrets

    Returns:
        Configuration value from secret, env var, or default

    Raises:
        ValueError: If required=True and value not found
    """
    if secret_name is None:
        secret_name = env_var.lower()

    secret_value = _read_docker_secret(secret_name)
    if secret_value is not None:
        logger.debug("config_value_loaded_from_secret", source="docker_secret", var=env_var)
        return secret_value

    env_value = os.getenv(env_var)
    if env_value is not None:
        logger.debug("config_value_loaded_from_env", source="environment", var=env_var)
        return env_value

    if default is not None:
        logger.debug("config_value_loaded_from_default", source="default", var=env_var)
        return default

    if required:
        raise ValueError(
            f"Required configuration value not found for '{env_var}'. "
            f"Checked: Docker secret '{secret_name}', environment variable '{env_var}'"
        )

    return None


def _safe_int(value: Any, field_name: str, default: int) -> int:
    """
    Convert value to int, raising ValueError with the field name on failure.
    """
    if value is None:
        return default

    if isinstance(value, bool):
        raise ValueError(f"Cannot convert {field_name} to int: bool")

    if isinstance(value, int):
        return value

    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            raise ValueError(f"Invalid integer for {field_name}: {value}")

    raise ValueError(f"Cannot convert {field_name} to int: {type(value).__name__}")


def _safe_float(value: Any, field_name: str, default: float) -> float:
    """
    Convert value to float, raising ValueError with the field name on failure.
    """
    if value is None:
        return default

    if isinstance(value, bool):
        raise ValueError(f"Cannot convert {field_name} to float: bool")

    if isinstance(value, (int, float)):
        return float(value)

    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            raise ValueError(f"Invalid float for {field_name}: {value}")

    raise ValueError(f"Cannot convert {field_name} to float: {type(value).__name__}")


def _safe_bool(value: Any, field_name: str, default: bool) -> bool:
    """Convert 'true'/'false'-style strings (and bools) to bool."""
    if value is None:
        return default

    if isinstance(value, bool):
        return value

    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False

    raise ValueError(f"Invalid boolean for {field_name}: {value}")


def _optional_int(value: Optional[str], field_name: str) -> Optional[int]:
    if value is None or value == "":
        return None
    return _safe_int(value, field_name, 0)


@dataclass
class ServerConfig:
    """Per-server configuration."""

    name: str
    """Server friendly name (e.g., 'Main PvE')."""

    tag: str
    """Server tag used in logs, metrics and health output. Must be unique."""

    telnet_host: str
    """Telnet console host."""

    telnet_port: int
    """Telnet console port."""

    telnet_password: str
    """Telnet console password."""

    connect_timeout: float = DEFAULT_TIMEOUT
    """Seconds allowed for the TCP connect."""

    read_timeout: float = DEFAULT_TIMEOUT
    """Seconds allowed for each console read or write."""

    poll_interval: int = DEFAULT_POLL_INTERVAL
    """Seconds between player list polls."""

    mackerel_host_id: Optional[str] = None
    """Mackerel host that receives this server's player metrics."""

    def __post_init__(self) -> None:
        """Validate server config after initialization."""
        if not self.tag or not self.tag.replace("_", "").isalnum():
            raise ValueError(
                f"Server tag must be alphanumeric (with underscores): {self.tag}"
            )

        if not self.telnet_host:
            raise ValueError(f"Server {self.tag}: telnet_host cannot be empty")

        if not 1 <= self.telnet_port <= 65535:
            raise ValueError(f"Invalid telnet port: {self.telnet_port}")

        if not self.telnet_password:
            raise ValueError(f"Server {self.tag}: telnet password cannot be empty")

        if self.connect_timeout <= 0 or self.read_timeout <= 0:
            raise ValueError(
                f"Server {self.tag}: timeouts must be > 0, "
                f"got connect={self.connect_timeout} read={self.read_timeout}"
            )

        if self.poll_interval <= 0:
            raise ValueError(
                f"Server {self.tag}: poll_interval must be > 0, got {self.poll_interval}"
            )


@dataclass
class Config:
    """Main application configuration."""

    servers: Dict[str, ServerConfig]
    """Dictionary of server tag -> ServerConfig."""

    # Mackerel metrics
    mackerel_api_key: Optional[str] = None
    """Mackerel API key. Metrics are only posted when set (or in dry-run)."""

    metrics_dry_run: bool = False
    """Log metric payloads instead of posting them."""

    state_dir: Path = field(
        default_factory=lambda: Path(tempfile.gettempdir()) / f"sdtd-monitor_{os.getuid()}"
    )
    """Directory for the last-seen player id state files."""

    # OpenTelemetry metrics
    otel_metrics_enabled: bool = False
    """Export player gauges over OTLP/HTTP (endpoint from OTEL_EXPORTER_OTLP_*)."""

    otel_export_interval: float = DEFAULT_OTEL_EXPORT_INTERVAL
    """Seconds between OTLP exports."""

    # Discord presence bot
    discord_bot_token: Optional[str] = None
    """Discord bot token. The presence bot only runs when set."""

    discord_guild_id: Optional[int] = None
    """Guild whose bot nickname shows the in-game clock."""

    status_channel_id: Optional[int] = None
    """Channel whose topic shows the online players."""

    presence_server: Optional[str] = None
    """Tag of the server shown in presence. Defaults to the first server."""

    presence_interval: int = DEFAULT_PRESENCE_INTERVAL
    """Seconds between presence refreshes."""

    # Health check configuration
    health_check_host: str = "0.0.0.0"
    """Host to bind health check server to. Default: 0.0.0.0"""

    health_check_port: int = 8080
    """Port to bind health check server to. Default: 8080"""

    # Logging configuration
    log_level: str = "info"
    """Logging level: debug, info, warning, error. Default: info"""

    log_format: str = "console"
    """Logging format: console or json. Default: console"""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if not self.servers:
            raise ValueError(
                "servers configuration is REQUIRED. "
                "servers.yml must define at least one server."
            )

        if not isinstance(self.servers, dict):
            raise ValueError(
                f"servers must be a non-empty dictionary, got {type(self.servers).__name__}"
            )

        if self.presence_server is not None and self.presence_server not in self.servers:
            raise ValueError(
                f"presence_server '{self.presence_server}' is not defined in servers.yml"
            )

        if self.presence_interval <= 0:
            raise ValueError(
                f"presence_interval must be > 0, got {self.presence_interval}"
            )

        if self.otel_export_interval <= 0:
            raise ValueError(
                f"otel_export_interval must be > 0, got {self.otel_export_interval}"
            )

        valid_levels = {"debug", "info", "warning", "error"}
        if self.log_level.lower() not in valid_levels:
            raise ValueError(
                f"Invalid log_level '{self.log_level}'. Must be one of: {', '.join(sorted(valid_levels))}"
            )

        if not 1 <= self.health_check_port <= 65535:
            raise ValueError(
                f"Invalid health_check_port: {self.health_check_port}. Must be 1-65535"
            )

        valid_formats = {"console", "json"}
        if self.log_format.lower() not in valid_formats:
            raise ValueError(
                f"Invalid log_format '{self.log_format}'. Must be one of: {', '.join(sorted(valid_formats))}"
            )

    @property
    def presence_tag(self) -> str:
        """Tag of the server shown by the presence bot."""
        if self.presence_server is not None:
            return self.presence_server
        return next(iter(self.servers))


def _expand_env_vars(value: Any) -> Any:
    """
    Expand ${VAR_NAME} references from the environment.

    Unknown variables are left as written.
    """
    if not isinstance(value, str):
        return value

    def replace_var(match: Any) -> str:
        var_name = match.group(1)
        return os.getenv(var_name, match.group(0))

    return re.sub(r'\$\{([^}]+)\}', replace_var, value)


def _load_server(tag: str, server_data: Dict[str, Any]) -> ServerConfig:
    """Build a ServerConfig from one servers.yml entry."""
    telnet_password = _expand_env_vars(server_data.get("telnet_password", "") or "")

    secret_password = get_config_value(
        env_var=f"TELNET_PASSWORD_{tag.upper()}",
        secret_name=f"telnet_password_{tag}",
        required=False,
    )
    if secret_password:
        telnet_password = secret_password

    mackerel_host_id = server_data.get("mackerel_host_id")

    return ServerConfig(
        name=server_data.get("name", tag),
        tag=tag,
        telnet_host=server_data.get("telnet_host", "localhost"),
        telnet_port=_safe_int(
            server_data.get("telnet_port", DEFAULT_TELNET_PORT),
            f"Server {tag} telnet_port",
            DEFAULT_TELNET_PORT,
        ),
        telnet_password=telnet_password,
        connect_timeout=_safe_float(
            server_data.get("connect_timeout"),
            f"Server {tag} connect_timeout",
            DEFAULT_TIMEOUT,
        ),
        read_timeout=_safe_float(
            server_data.get("read_timeout"),
            f"Server {tag} read_timeout",
            DEFAULT_TIMEOUT,
        ),
        poll_interval=_safe_int(
            server_data.get("poll_interval"),
            f"Server {tag} poll_interval",
            DEFAULT_POLL_INTERVAL,
        ),
        mackerel_host_id=_expand_env_vars(mackerel_host_id) if mackerel_host_id else None,
    )


def load_config() -> Config:
    """
    Load configuration from servers.yml and the environment.

    Returns:
        Fully populated, validated Config

    Raises:
        FileNotFoundError: If servers.yml not found
        ValueError: If required config values are missing or invalid
        yaml.YAMLError: If servers.yml is not valid YAML
    """
    config_dir = os.getenv("CONFIG_DIR", ".")
    servers_yml_path = Path(config_dir) / "servers.yml"

    if not servers_yml_path.exists():
        raise FileNotFoundError(
            f"servers.yml not found at {servers_yml_path}. "
            f"At least one telnet console must be configured."
        )

    with open(servers_yml_path) as f:
        servers_data = yaml.safe_load(f)

    if not servers_data or not isinstance(servers_data.get("servers"), dict):
        raise ValueError("servers.yml must contain 'servers' key with server definitions")

    servers: Dict[str, ServerConfig] = {}
    for tag, server_data in servers_data["servers"].items():
        servers[str(tag)] = _load_server(str(tag), server_data or {})

    state_dir = get_config_value(env_var="STATE_DIR")

    config = Config(
        servers=servers,
        mackerel_api_key=get_config_value(
            env_var="MACKEREL_API_KEY",
            secret_name="mackerel_api_key",
        ),
        metrics_dry_run=_safe_bool(
            get_config_value(env_var="METRICS_DRY_RUN", default="false"),
            "metrics_dry_run",
            False,
        ),
        otel_metrics_enabled=_safe_bool(
            get_config_value(env_var="OTEL_METRICS_ENABLED", default="false"),
            "otel_metrics_enabled",
            False,
        ),
        otel_export_interval=_safe_float(
            get_config_value(env_var="OTEL_EXPORT_INTERVAL"),
            "otel_export_interval",
            DEFAULT_OTEL_EXPORT_INTERVAL,
        ),
        discord_bot_token=get_config_value(
            env_var="DISCORD_BOT_TOKEN",
            secret_name="discord_bot_token",
        ),
        discord_guild_id=_optional_int(
            get_config_value(env_var="DISCORD_GUILD_ID"), "discord_guild_id"
        ),
        status_channel_id=_optional_int(
            get_config_value(env_var="STATUS_CHANNEL_ID"), "status_channel_id"
        ),
        presence_server=get_config_value(env_var="PRESENCE_SERVER"),
        presence_interval=_safe_int(
            get_config_value(env_var="PRESENCE_INTERVAL"),
            "presence_interval",
            DEFAULT_PRESENCE_INTERVAL,
        ),
        health_check_host=get_config_value(
            env_var="HEALTH_CHECK_HOST", default="0.0.0.0"
        ) or "0.0.0.0",
        health_check_port=_safe_int(
            get_config_value(env_var="HEALTH_CHECK_PORT", default="8080"),
            "health_check_port",
            8080,
        ),
        log_level=get_config_value(env_var="LOG_LEVEL", default="info") or "info",
        log_format=get_config_value(env_var="LOG_FORMAT", default="console") or "console",
    )
    if state_dir:
        config.state_dir = Path(state_dir)

    return config


def validate_config(config: Config) -> bool:
    """
    Check a Config for settings that are valid but unusable.

    Returns:
        True if config is usable, False otherwise (reason is logged)
    """
    try:
        if not config.servers:
            logger.error("config_validation_failed_no_servers")
            return False

        if config.mackerel_api_key and not config.metrics_dry_run:
            for tag, server in config.servers.items():
                if not server.mackerel_host_id:
                    logger.error("config_validation_failed_no_mackerel_host", server=tag)
                    return False

        if config.discord_bot_token and config.discord_guild_id is None:
            logger.warning(
                "config_presence_without_guild",
                message="Bot nickname (game clock) will not be updated",
            )

        return True

    except Exception as e:
        logger.error("config_validation_error", error=str(e))
        return False
