

"""
SDTD Monitor - Main Entry Point

Polls 7 Days to Die servers over their telnet console.
- servers.yml configuration is MANDATORY
- Per-server ConsoleStatsCollector posts player metrics to Mackerel
- Player gauges optionally exported over OpenTelemetry (OTLP/HTTP)
- Optional Discord presence bot mirrors game clock and player count
- Health endpoint reports the last poll of every server
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Any, Dict, Optional

import structlog

# Import helpers with support for package vs. flat layout
try:
    # Package-style imports (python -m src.main)
    from .config import Config, ServerConfig, load_config, validate_config  # type: ignore
    from .health import HealthCheckServer  # type: ignore
    from .telnet_client import TelnetClient  # type: ignore
    from .stats_collector import ConsoleStatsCollector  # type: ignore
    from .player_metrics import MackerelExporter, PlayerIdState, PlayerMetricsPublisher  # type: ignore
    from .otel_metrics import PlayerGauges, build_otlp_reader  # type: ignore
except ImportError:
    # Flat layout (tests and direct execution)
    from config import Config, ServerConfig, load_config, validate_config  # type: ignore
    from health import HealthCheckServer  # type: ignore
    from telnet_client import TelnetClient  # type: ignore
    from stats_collector import ConsoleStatsCollector  # type: ignore
    from player_metrics import MackerelExporter, PlayerIdState, PlayerMetricsPublisher  # type: ignore
    from otel_metrics import PlayerGauges, build_otlp_reader  # type: ignore

logger = structlog.get_logger()


def setup_logging(log_level: str, log_format: str) -> None:
    """
    Configure structured logging.

    Args:
        log_level: Logging level (debug, info, warning, error, critical)
        log_format: Output format ("json" or "console")
    """
    level_map: dict[str, int] = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
        "critical": logging.CRITICAL,
    }

    min_level = level_map.get(log_level.lower(), logging.INFO)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logger.info("logging_configured", level=log_level, format=log_format)


class Application:
    """Wires telnet clients, collectors, metrics, presence and health together."""

    def __init__(self) -> None:
        self.config: Optional[Config] = None
        self.health_server: Optional[HealthCheckServer] = None
        self.clients: Dict[str, TelnetClient] = {}
        self.collectors: Dict[str, ConsoleStatsCollector] = {}
        self.exporter: Optional[MackerelExporter] = None
        self.gauges: Optional[PlayerGauges] = None
        self.presence_bot: Optional[Any] = None
        self.shutdown_event: asyncio.Event = asyncio.Event()

    async def setup(self) -> None:
        """Load configuration and build per-server components."""
        logger.info("application_starting")

        try:
            self.config = load_config()
            if not validate_config(self.config):
                raise ValueError("Configuration validation failed")
        except Exception as e:
            logger.error("config_load_failed", error=str(e))
            raise

        setup_logging(self.config.log_level, self.config.log_format)

        if self.config.mackerel_api_key or self.config.metrics_dry_run:
            self.exporter = MackerelExporter(
                api_key=self.config.mackerel_api_key or "",
                dry_run=self.config.metrics_dry_run,
            )
        else:
            logger.info("metrics_disabled", message="MACKEREL_API_KEY not set")

        if self.config.otel_metrics_enabled:
            self.gauges = PlayerGauges(build_otlp_reader(self.config.otel_export_interval))
            logger.info("otel_metrics_enabled", interval=self.config.otel_export_interval)

        for tag, server_config in self.config.servers.items():
            client = TelnetClient.from_config(server_config)
            self.clients[tag] = client
            self.collectors[tag] = ConsoleStatsCollector(
                client=client,
                publisher=self._build_publisher(server_config),
                interval=server_config.poll_interval,
            )

        self.health_server = HealthCheckServer(
            host=self.config.health_check_host,
            port=self.config.health_check_port,
            status_source=self.server_status,
        )

        logger.info(
            "application_configured",
            health_port=self.config.health_check_port,
            servers_count=len(self.config.servers),
            metrics_enabled=self.exporter is not None,
            otel_enabled=self.gauges is not None,
            presence_enabled=bool(self.config.discord_bot_token),
        )

    def _build_publisher(self, server_config: ServerConfig) -> Optional[PlayerMetricsPublisher]:
        if self.exporter is None and self.gauges is None:
            return None

        assert self.config is not None
        state = PlayerIdState(self.config.state_dir / f"{server_config.tag}.json")
        state.load()
        return PlayerMetricsPublisher(
            exporter=self.exporter,
            host_id=server_config.mackerel_host_id or server_config.tag,
            state=state,
            gauges=self.gauges,
            server_tag=server_config.tag,
        )

    def server_status(self) -> Dict[str, Dict[str, Any]]:
        """Collector status per server tag, for the health endpoint."""
        return {tag: collector.status() for tag, collector in self.collectors.items()}

    async def start(self) -> None:
        """Start health server, collectors, and the presence bot."""
        logger.info("application_starting_components")
        assert self.config is not None, "Config not loaded"
        assert self.health_server is not None, "Health server not initialized"

        await self.health_server.start()

        for collector in self.collectors.values():
            await collector.start()

        if self.config.discord_bot_token:
            await self._start_presence_bot()

        logger.info("application_running", servers=list(self.collectors.keys()))

    async def _start_presence_bot(self) -> None:
        assert self.config is not None

        try:
            from .discord_bot import PresenceBot  # type: ignore
        except ImportError:
            from discord_bot import PresenceBot  # type: ignore

        client = self.clients[self.config.presence_tag]
        self.presence_bot = PresenceBot(
            token=self.config.discord_bot_token,
            status_provider=client.get_status,
            guild_id=self.config.discord_guild_id,
            status_channel_id=self.config.status_channel_id,
            interval=self.config.presence_interval,
        )
        await self.presence_bot.connect_bot()
        logger.info("presence_bot_started", server=client.label)

    async def stop(self) -> None:
        """Gracefully stop all components."""
        logger.info("application_stopping")

        for tag, collector in self.collectors.items():
            try:
                await collector.stop()
            except Exception as e:
                logger.error("stats_collector_stop_failed", server=tag, error=str(e))

        if self.presence_bot is not None:
            try:
                await self.presence_bot.disconnect_bot()
            except Exception as e:
                logger.error("presence_bot_stop_failed", error=str(e))

            logger.debug("presence_bot_stopped")

        if self.exporter is not None:
            await self.exporter.close()

        if self.gauges is not None:
            self.gauges.shutdown()

        if self.health_server is not None:
            try:
                await self.health_server.stop()
            except Exception as e:
                logger.error("health_server_stop_failed", error=str(e))

        logger.info("application_stopped")

    async def run(self) -> None:
        """Main application run loop."""
        try:
            await self.setup()
            await self.start()
            await self.shutdown_event.wait()
        except KeyboardInterrupt:
            logger.info("received_keyboard_interrupt")
        except Exception as e:
            logger.error("application_error", error=str(e), exc_info=True)
            raise
        finally:
            await self.stop()


async def main() -> None:
    """Main async entry point."""
    app = Application()

    def _signal_handler(signum: int, frame: Any) -> None:
        logger.info("received_signal", signal=signal.Signals(signum).name)
        app.shutdown_event.set()

    # Not available on every platform / thread
    try:
        signal.signal(signal.SIGINT, _signal_handler)
        signal.signal(signal.SIGTERM, _signal_handler)
    except (ValueError, OSError) as e:
        logger.debug("signal_handlers_unavailable", error=str(e))

    try:
        await app.run()
    except Exception as e:
        logger.error("fatal_error", error=str(e), exc_info=True)
        sys.exit(1)


def cli() -> None:
    """Console script entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nShutdown complete.")
        sys.exit(0)


if __name__ == "__main__":
    cli()
