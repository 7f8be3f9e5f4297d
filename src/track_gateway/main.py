from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from functools import partial
from pathlib import Path
from typing import Any

import dotenv
import uvloop
import yaml

from track_gateway.const import (
    FOREIGN_LOG_FORMATTER,
    MQTT_SINK_START_TASK_NAME,
    SERVER_START_TASK_NAME,
    STATS_API_START_TASK_NAME,
    TRACK_VERSION,
)
from track_gateway.correlation import correlation_context, ensure_correlation_id
from track_gateway.instrumentation import configure_instrumentation
from track_gateway.logging_abstraction import configure_logging, get_logger
from track_gateway.router import CommandRouter, EventSink
from track_gateway.server import TrackGatewayServer
from track_gateway.session import SessionRegistry
from track_gateway.sinks import LoggingSink, MQTTEventSink
from track_gateway.stats_api import StatsServer
from track_gateway.structs import GatewayEnv
from track_gateway.utils import signal_handler

logger = get_logger(__name__)

# Control uvicorn logging
uv_handler = logging.StreamHandler(sys.stdout)
uv_handler.setLevel(logging.INFO)
uv_handler.setFormatter(FOREIGN_LOG_FORMATTER)
for _ul in (logging.getLogger("uvicorn"), logging.getLogger("uvicorn.error"), logging.getLogger("uvicorn.access")):
    _ul.setLevel(logging.INFO)
    _ul.propagate = False
    _ul.addHandler(uv_handler)

# Suppress verbose MQTT library warnings
mqtt_logger = logging.getLogger("mqtt")
mqtt_logger.setLevel(logging.ERROR)
mqtt_logger.propagate = False


def parse_config(config_file: Path) -> dict[str, Any]:
    """Parse a YAML settings file into ``GatewayEnv`` overrides.

    Keys are ``GatewayEnv`` field names; unknown keys are logged and ignored.

    Raises:
        Exception: If the file cannot be read or is not valid YAML

    """
    logger.debug("Parsing config file: %s", config_file)
    try:
        with config_file.open() as f:
            config_data = yaml.safe_load(f)
    except Exception:
        logger.exception("Failed to parse config file: %s", config_file)
        raise

    if not config_data:
        logger.warning("Config file is empty: %s", config_file)
        return {}
    if not isinstance(config_data, dict):
        logger.warning("Config file must hold a mapping of settings: %s", config_file)
        return {}

    overrides: dict[str, Any] = {}
    for key, value in config_data.items():
        if key in GatewayEnv.model_fields:
            overrides[key] = value
        else:
            logger.warning("Ignoring unknown config key: %s", key)
    logger.info("Parsed config: %d settings", len(overrides))
    return overrides


def build_env(config_file: Path | None = None, *, stats_api: bool = False, debug: bool = False) -> GatewayEnv:
    """Environment first, then the optional YAML file, then CLI switches."""
    settings = GatewayEnv.from_environ().model_dump()
    if config_file is not None:
        settings.update(parse_config(config_file))
    if stats_api:
        settings["stats_api_enabled"] = True
    if debug:
        settings["debug"] = True
    return GatewayEnv.model_validate(settings)


def apply_env(env: GatewayEnv) -> None:
    """Re-apply logging and timing settings that were read before the env file and config."""
    configure_logging(
        level=logging.DEBUG if env.debug else logging.INFO,
        log_format=env.log_format,
        json_file=env.log_json_file,
        human_output=env.log_human_output,
    )
    configure_instrumentation(env.perf_tracking, env.perf_threshold_ms)
    if env.debug:
        logger.info("Debug mode enabled")


class TrackGateway:
    """Process-level wiring: builds the server and its collaborators and owns their lifecycle."""

    lp: str = "TrackGateway:"

    def __init__(self, env: GatewayEnv) -> None:
        self.env = env
        self.loop = uvloop.new_event_loop()
        asyncio.set_event_loop(self.loop)

        logger.info(" Initializing track-gateway", extra={"version": TRACK_VERSION})

        sinks: list[EventSink] = [LoggingSink(speed_limit_kmh=env.speed_limit_kmh)]
        self.mqtt_sink: MQTTEventSink | None = None
        if env.mqtt_enabled:
            self.mqtt_sink = MQTTEventSink(env)
            sinks.append(self.mqtt_sink)

        self.registry = SessionRegistry(env.max_connections)
        self.router = CommandRouter(sinks)
        self.server = TrackGatewayServer(env, registry=self.registry, router=self.router)
        self.stats_server: StatsServer | None = None
        if env.stats_api_enabled:
            self.stats_server = StatsServer(self.server, host=env.host, port=env.stats_api_port)
        self.tasks: list[asyncio.Task[None]] = []
        self.stopping: bool = False
        self.stopped = asyncio.Event()

        self.loop.add_signal_handler(signal.SIGINT, partial(signal_handler, signal.SIGINT, self.stop))
        self.loop.add_signal_handler(signal.SIGTERM, partial(signal_handler, signal.SIGTERM, self.stop))
        logger.debug("Signal handlers configured for SIGINT & SIGTERM")

    async def start(self) -> None:
        """Start the TCP server, the MQTT sink and the stats API."""
        _ = ensure_correlation_id()

        self.server.start_task = s_start = asyncio.Task(self.server.start(), name=SERVER_START_TASK_NAME)
        self.tasks.append(s_start)

        if self.mqtt_sink is not None:
            logger.info(" Starting MQTT event sink...")
            self.mqtt_sink.start_task = m_start = asyncio.Task(self.mqtt_sink.start(), name=MQTT_SINK_START_TASK_NAME)
            self.tasks.append(m_start)

        if self.stats_server is not None:
            logger.info(" Starting stats API...")
            self.stats_server.start_task = x_start = asyncio.Task(
                self.stats_server.start(),
                name=STATS_API_START_TASK_NAME,
            )
            self.tasks.append(x_start)

        try:
            _ = await asyncio.gather(*self.tasks, return_exceptions=True)
            if self.stopping:
                # let a signal-driven stop() finish before the loop closes
                await self.stopped.wait()
        except Exception as e:
            logger.exception(" Service startup failed", extra={"error": str(e)})
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop every service, then cancel whatever is still running."""
        logger.info(" Shutting down track-gateway...")
        self.stopping = True
        try:
            await self.server.stop()
            if self.stats_server is not None:
                logger.debug("Stopping stats API...")
                await self.stats_server.stop()
            if self.mqtt_sink is not None:
                logger.debug("Stopping MQTT sink...")
                await self.mqtt_sink.stop()
            for task in self.tasks:
                if not task.done():
                    logger.debug("%s Cancelling task: %s", self.lp, task.get_name())
                    _ = task.cancel()
            logger.info("%s Signal cleanup completed", self.lp)
        finally:
            self.stopped.set()


def load_env_file(env_file: Path) -> bool:
    env_path = env_file.expanduser().resolve()
    if not env_path.exists():
        logger.error("Environment file not found", extra={"path": str(env_path)})
        return False
    if dotenv.load_dotenv(env_path, override=True):
        logger.info(" Environment variables loaded", extra={"source": str(env_path)})
        return True
    logger.warning("No environment variables loaded from file", extra={"path": str(env_path)})
    return False


def parse_cli(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="@Track (Queclink) TCP ingestion gateway")
    parser.add_argument(
        "--stats-api",
        action="store_true",
        dest="stats_api",
        help="Enable the stats HTTP API",
    )
    parser.add_argument(
        "-D",
        "--debug",
        action="store_true",
        help="Enable debug mode",
    )
    _ = parser.add_argument("--env", help="Path to the environment file", default=None, type=Path)
    _ = parser.add_argument("--config", help="Path to a YAML settings file", default=None, type=Path)
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for track-gateway."""
    with correlation_context():
        logger.info("Starting track-gateway", extra={"version": TRACK_VERSION})

        args = parse_cli(argv)
        # env file first: every setting below, debug included, may come from it
        if args.env:
            _ = load_env_file(args.env)

        try:
            env = build_env(args.config, stats_api=args.stats_api, debug=args.debug)
        except Exception as e:
            logger.exception(" Invalid configuration", extra={"error": str(e)})
            sys.exit(1)
        apply_env(env)

        gateway = TrackGateway(env)
        try:
            gateway.loop.run_until_complete(gateway.start())
        except asyncio.CancelledError:
            logger.info("track-gateway cancelled, shutting down...")
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received, shutting down...")
        except Exception as e:
            logger.exception(" Fatal error in main loop", extra={"error": str(e)})
        else:
            logger.info(" track-gateway stopped gracefully")
        finally:
            if not gateway.loop.is_closed():
                gateway.loop.close()
            logger.info("track-gateway shutdown complete")


if __name__ == "__main__":
    main()
