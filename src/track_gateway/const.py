import logging
import os
import time
import zoneinfo

import tzlocal

from track_gateway import __version__

__all__ = [
    "ACK_PREFIX",
    "BUFF_PREFIX",
    "CLASSIFICATION_TIMEOUT",
    "DEFAULT_CONNECTION_LIFE",
    "DEFAULT_HEARTBEAT_INTERVAL",
    "DEFAULT_LOG_FORMAT",
    "DEFAULT_LOG_HUMAN_OUTPUT",
    "DEFAULT_MAX_CONNECTIONS",
    "DEFAULT_MQTT_CONN_DELAY",
    "DEFAULT_MQTT_HOST",
    "DEFAULT_MQTT_PORT",
    "DEFAULT_MQTT_TOPIC",
    "DEFAULT_PERF_THRESHOLD_MS",
    "DEFAULT_SACK_MODE",
    "DEFAULT_SEQUENCE_NUMBER",
    "DEFAULT_SPEED_LIMIT_KMH",
    "DEFAULT_SRV_HOST",
    "DEFAULT_SRV_PORT",
    "DEFAULT_STATS_API_PORT",
    "DEFAULT_STATS_LOG_INTERVAL",
    "FIELD_SEPARATOR",
    "FOREIGN_LOG_FORMATTER",
    "FRAME_TERMINATOR",
    "HEARTBEAT_COMMAND",
    "HTTP_MARKERS",
    "LOCAL_TZ",
    "MAX_BUFFER_SIZE",
    "MIN_FRAME_FIELDS",
    "MQTT_SINK_START_TASK_NAME",
    "PROCESS_STARTED_AT",
    "RESP_PREFIX",
    "SACK_PREFIX",
    "SACK_VERSION_LENGTH",
    "SERVER_START_TASK_NAME",
    "STATS_API_START_TASK_NAME",
    "TRACK_CHUNK_SIZE",
    "TRACK_DEBUG",
    "TRACK_LOG_FORMAT",
    "TRACK_LOG_HUMAN_OUTPUT",
    "TRACK_LOG_JSON_FILE",
    "TRACK_PERF_THRESHOLD_MS",
    "TRACK_PERF_TRACKING",
    "TRACK_VERSION",
    "YES_ANSWER",
    "env_bool",
    "env_float",
    "env_int",
    "env_str",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", 1, "on", "o")
LOCAL_TZ = zoneinfo.ZoneInfo(str(tzlocal.get_localzone()))
# monotonic clock reading taken when the package is first imported
PROCESS_STARTED_AT: float = time.monotonic()

# third-party loggers (uvicorn): adds logger name
FOREIGN_LOG_FORMATTER = logging.Formatter(
    "%(asctime)s.%(msecs)d %(levelname)s <%(name)s> [%(module)s:%(lineno)d] > %(message)s",
    "%m/%d/%y %H:%M:%S",
)
TRACK_VERSION: str = __version__


# Environment readers. GatewayEnv.from_environ() and the bootstrap logging
# settings below both go through these, with the DEFAULT_* values as fallbacks.
def env_str(name: str, default: str | None, *fallbacks: str) -> str | None:
    """First non-empty value among ``name`` and ``fallbacks``, else ``default``."""
    for key in (name, *fallbacks):
        raw = os.environ.get(key)
        if raw:
            return raw
    return default


def env_int(name: str, default: int, *fallbacks: str) -> int:
    """Read an int env var, trying fallback names in order and tolerating junk values."""
    for key in (name, *fallbacks):
        raw = os.environ.get(key)
        if not raw:
            continue
        try:
            return int(raw)
        except ValueError:
            continue
    return default


def env_float(name: str, default: float, *fallbacks: str) -> float:
    for key in (name, *fallbacks):
        raw = os.environ.get(key)
        if not raw:
            continue
        try:
            return float(raw)
        except ValueError:
            continue
    return default


def env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if not raw:
        return default
    return raw.casefold() in YES_ANSWER


# Wire protocol
ACK_PREFIX = "+ACK:"
RESP_PREFIX = "+RESP:"
BUFF_PREFIX = "+BUFF:"
SACK_PREFIX = "+SACK:"
FRAME_TERMINATOR = "$"
FIELD_SEPARATOR = ","
MIN_FRAME_FIELDS = 6
HEARTBEAT_COMMAND = "GTHBD"
SACK_VERSION_LENGTH = 6
DEFAULT_SEQUENCE_NUMBER = "0000"
# observed max frame is well under 1KB; anything bigger without a terminator is junk
MAX_BUFFER_SIZE = 4096
TRACK_CHUNK_SIZE = 2048

HTTP_MARKERS: tuple[str, ...] = ("HTTP/", "GET ", "HEAD ", "POST ", "User-Agent:")
CLASSIFICATION_TIMEOUT: float = 5.0

# Server defaults (env: SERVER_HOST, PORT/SERVER_PORT, SACK_MODE, ...)
DEFAULT_SRV_HOST = "0.0.0.0"
DEFAULT_SRV_PORT = 8080
DEFAULT_SACK_MODE = 1
DEFAULT_HEARTBEAT_INTERVAL = 60
DEFAULT_CONNECTION_LIFE = 30.0
DEFAULT_MAX_CONNECTIONS = 1000
DEFAULT_STATS_LOG_INTERVAL = 300.0
DEFAULT_SPEED_LIMIT_KMH = 120.0

# MQTT event sink defaults (env: TRACK_MQTT_*)
DEFAULT_MQTT_HOST = "localhost"
DEFAULT_MQTT_PORT = 1883
DEFAULT_MQTT_TOPIC = "track_gateway"
DEFAULT_MQTT_CONN_DELAY = 10

# Stats HTTP API defaults (env: TRACK_STATS_API_*)
DEFAULT_STATS_API_PORT = 8081

# Logging and instrumentation defaults (env: TRACK_LOG_*, TRACK_PERF_*)
DEFAULT_LOG_FORMAT = "human"  # "json", "human", or "both"
DEFAULT_LOG_HUMAN_OUTPUT = "stdout"  # "stdout", "stderr", or file path
DEFAULT_PERF_THRESHOLD_MS = 100

# Bootstrap values for loggers created at import time, before main() has
# built a GatewayEnv. main() re-applies the env-file aware values.
TRACK_DEBUG: bool = env_bool("TRACK_DEBUG", False)
TRACK_LOG_FORMAT: str = env_str("TRACK_LOG_FORMAT", DEFAULT_LOG_FORMAT) or DEFAULT_LOG_FORMAT
TRACK_LOG_JSON_FILE: str | None = env_str("TRACK_LOG_JSON_FILE", None)
TRACK_LOG_HUMAN_OUTPUT: str = env_str("TRACK_LOG_HUMAN_OUTPUT", DEFAULT_LOG_HUMAN_OUTPUT) or DEFAULT_LOG_HUMAN_OUTPUT
TRACK_PERF_TRACKING: bool = env_bool("TRACK_PERF_TRACKING", True)
TRACK_PERF_THRESHOLD_MS: int = env_int("TRACK_PERF_THRESHOLD_MS", DEFAULT_PERF_THRESHOLD_MS)

# Task names
SERVER_START_TASK_NAME = "track_gateway_server_start"
MQTT_SINK_START_TASK_NAME = "track_gateway_mqtt_sink_start"
STATS_API_START_TASK_NAME = "track_gateway_stats_api_start"
