"""Core data structures and configuration model for the track gateway."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import IntEnum, StrEnum

from pydantic import BaseModel, Field, field_validator

from track_gateway.const import (
    ACK_PREFIX,
    BUFF_PREFIX,
    DEFAULT_CONNECTION_LIFE,
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_LOG_FORMAT,
    DEFAULT_LOG_HUMAN_OUTPUT,
    DEFAULT_MAX_CONNECTIONS,
    DEFAULT_MQTT_CONN_DELAY,
    DEFAULT_MQTT_HOST,
    DEFAULT_MQTT_PORT,
    DEFAULT_MQTT_TOPIC,
    DEFAULT_PERF_THRESHOLD_MS,
    DEFAULT_SACK_MODE,
    DEFAULT_SPEED_LIMIT_KMH,
    DEFAULT_SRV_HOST,
    DEFAULT_SRV_PORT,
    DEFAULT_STATS_API_PORT,
    DEFAULT_STATS_LOG_INTERVAL,
    FIELD_SEPARATOR,
    FRAME_TERMINATOR,
    RESP_PREFIX,
    SACK_PREFIX,
    env_bool,
    env_float,
    env_int,
    env_str,
)

__all__ = [
    "AckMode",
    "Frame",
    "FrameKind",
    "GatewayEnv",
]


class FrameKind(StrEnum):
    """Frame type, valued by its wire prefix (without the colon)."""

    ACK = "+ACK"
    RESP = "+RESP"
    BUFF = "+BUFF"
    SACK = "+SACK"

    @property
    def prefix(self) -> str:
        return f"{self.value}:"


FRAME_PREFIXES: dict[str, FrameKind] = {
    ACK_PREFIX: FrameKind.ACK,
    RESP_PREFIX: FrameKind.RESP,
    BUFF_PREFIX: FrameKind.BUFF,
    SACK_PREFIX: FrameKind.SACK,
}


class AckMode(IntEnum):
    """Server acknowledgement (SACK) mode as configured on the device."""

    NEVER = 0
    VERIFY_SEQUENCE = 1
    ALWAYS_NO_VERIFY = 2


@dataclass(frozen=True, slots=True)
class Frame:
    """A decoded @Track protocol frame."""

    kind: FrameKind
    command_word: str
    protocol_version: str
    device_id: str
    device_name: str
    send_time: str
    sequence_number: str
    raw_text: str

    @property
    def body_fields(self) -> list[str]:
        """Comma-split body with prefix and terminator stripped."""
        body = self.raw_text
        if body.startswith(self.kind.prefix):
            body = body[len(self.kind.prefix) :]
        return body.removesuffix(FRAME_TERMINATOR).split(FIELD_SEPARATOR)

    @property
    def sent_at(self) -> datetime | None:
        """Device send time (YYYYMMDDHHMMSS, UTC), None when malformed."""
        if len(self.send_time) != 14 or not self.send_time.isdigit():
            return None
        try:
            return datetime.strptime(self.send_time, "%Y%m%d%H%M%S").replace(tzinfo=UTC)
        except ValueError:
            return None


class GatewayEnv(BaseModel):
    """Runtime configuration for the gateway.

    Built from the process environment by ``from_environ()`` and handed to the
    server and collaborators explicitly at startup.
    """

    host: str = DEFAULT_SRV_HOST
    port: int = Field(default=DEFAULT_SRV_PORT, ge=0, le=65535)
    enable_sack: bool = False
    sack_mode: AckMode = Field(default=DEFAULT_SACK_MODE, validate_default=True)
    heartbeat_interval: int = Field(default=DEFAULT_HEARTBEAT_INTERVAL, ge=0)
    connection_life: float = Field(default=DEFAULT_CONNECTION_LIFE, gt=0)
    max_connections: int = Field(default=DEFAULT_MAX_CONNECTIONS, ge=1)
    stats_log_interval: float = Field(default=DEFAULT_STATS_LOG_INTERVAL, ge=0)
    speed_limit_kmh: float = DEFAULT_SPEED_LIMIT_KMH
    # MQTT event sink
    mqtt_enabled: bool = False
    mqtt_host: str = DEFAULT_MQTT_HOST
    mqtt_port: int = DEFAULT_MQTT_PORT
    mqtt_user: str | None = None
    mqtt_pass: str | None = None
    mqtt_topic: str = DEFAULT_MQTT_TOPIC
    mqtt_conn_delay: int = Field(default=DEFAULT_MQTT_CONN_DELAY, ge=0)
    # Stats HTTP API
    stats_api_enabled: bool = False
    stats_api_port: int = Field(default=DEFAULT_STATS_API_PORT, ge=0, le=65535)
    # Logging and instrumentation
    debug: bool = False
    log_format: str = DEFAULT_LOG_FORMAT
    log_json_file: str | None = None
    log_human_output: str = DEFAULT_LOG_HUMAN_OUTPUT
    perf_tracking: bool = True
    perf_threshold_ms: int = Field(default=DEFAULT_PERF_THRESHOLD_MS, ge=0)

    @field_validator("sack_mode", mode="before")
    @classmethod
    def _coerce_sack_mode(cls, value: object) -> object:
        # unknown modes fall back to the device default instead of failing startup
        try:
            return AckMode(int(value))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return AckMode.VERIFY_SEQUENCE

    @classmethod
    def from_environ(cls) -> GatewayEnv:
        """Read the environment (e.g. after a dotenv file was loaded)."""
        return cls(
            host=env_str("SERVER_HOST", DEFAULT_SRV_HOST),
            port=env_int("PORT", DEFAULT_SRV_PORT, "SERVER_PORT"),
            enable_sack=env_bool("ENABLE_SACK", False),
            sack_mode=os.environ.get("SACK_MODE", DEFAULT_SACK_MODE),
            heartbeat_interval=env_int("HEARTBEAT_INTERVAL", DEFAULT_HEARTBEAT_INTERVAL),
            connection_life=env_float("CONNECTION_LIFE", DEFAULT_CONNECTION_LIFE),
            max_connections=env_int("MAX_CONNECTIONS", DEFAULT_MAX_CONNECTIONS),
            stats_log_interval=env_float("TRACK_STATS_LOG_INTERVAL", DEFAULT_STATS_LOG_INTERVAL),
            speed_limit_kmh=env_float("TRACK_SPEED_LIMIT_KMH", DEFAULT_SPEED_LIMIT_KMH),
            mqtt_enabled=env_bool("TRACK_MQTT_ENABLED", False),
            mqtt_host=env_str("TRACK_MQTT_HOST", DEFAULT_MQTT_HOST),
            mqtt_port=env_int("TRACK_MQTT_PORT", DEFAULT_MQTT_PORT),
            mqtt_user=env_str("TRACK_MQTT_USER", None),
            mqtt_pass=env_str("TRACK_MQTT_PASS", None),
            mqtt_topic=env_str("TRACK_MQTT_TOPIC", DEFAULT_MQTT_TOPIC),
            mqtt_conn_delay=env_int("TRACK_MQTT_CONN_DELAY", DEFAULT_MQTT_CONN_DELAY),
            stats_api_enabled=env_bool("TRACK_STATS_API_ENABLED", False),
            stats_api_port=env_int("TRACK_STATS_API_PORT", DEFAULT_STATS_API_PORT),
            debug=env_bool("TRACK_DEBUG", False),
            log_format=env_str("TRACK_LOG_FORMAT", DEFAULT_LOG_FORMAT),
            log_json_file=env_str("TRACK_LOG_JSON_FILE", None),
            log_human_output=env_str("TRACK_LOG_HUMAN_OUTPUT", DEFAULT_LOG_HUMAN_OUTPUT),
            perf_tracking=env_bool("TRACK_PERF_TRACKING", True),
            perf_threshold_ms=env_int("TRACK_PERF_THRESHOLD_MS", DEFAULT_PERF_THRESHOLD_MS),
        )
