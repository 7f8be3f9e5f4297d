"""
Shared fixtures for unit tests.

This module provides reusable fixtures for testing track-gateway components.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from track_gateway.protocol.frame_codec import decode
from track_gateway.session import Session
from track_gateway.structs import AckMode, GatewayEnv

from tests.unit.test_helpers import (
    FIXED_REPORT_TEXT,
    HEARTBEAT_TEXT,
    POWER_FAILURE_TEXT,
    SPEEDING_REPORT_TEXT,
)


@pytest.fixture
def gateway_env():
    """
    GatewayEnv with explicit test values.

    Acks enabled, ephemeral port, short connection life.
    """
    return GatewayEnv(
        host="127.0.0.1",
        port=0,
        enable_sack=True,
        sack_mode=AckMode.VERIFY_SEQUENCE,
        heartbeat_interval=60,
        connection_life=5,
        max_connections=10,
        stats_log_interval=0,
        speed_limit_kmh=120,
        mqtt_enabled=False,
        mqtt_topic="track_test",
        stats_api_enabled=False,
    )


@pytest.fixture
def heartbeat_frame():
    return decode(HEARTBEAT_TEXT)


@pytest.fixture
def fixed_report_frame():
    return decode(FIXED_REPORT_TEXT)


@pytest.fixture
def speeding_report_frame():
    return decode(SPEEDING_REPORT_TEXT)


@pytest.fixture
def power_failure_frame():
    return decode(POWER_FAILURE_TEXT)


@pytest.fixture
def session():
    return Session("10.0.0.5:40123")


@pytest.fixture
def mock_writer():
    """
    Mock asyncio.StreamWriter.

    Sync write/close/is_closing, async drain/wait_closed.
    """
    writer = MagicMock()
    writer.is_closing = MagicMock(return_value=False)
    writer.close = MagicMock()
    writer.wait_closed = AsyncMock()
    writer.drain = AsyncMock()
    writer.write = MagicMock()
    writer.get_extra_info = MagicMock(return_value=("10.0.0.5", 40123))
    return writer


@pytest.fixture
def mock_sink():
    """
    Mock EventSink.

    Every hook is an AsyncMock so calls and their order can be asserted.
    """
    sink = MagicMock()
    sink.on_device_identified = AsyncMock()
    sink.on_frame = AsyncMock()
    sink.on_disconnect = AsyncMock()
    return sink


GATEWAY_ENV_VARS = (
    "SERVER_HOST",
    "PORT",
    "SERVER_PORT",
    "ENABLE_SACK",
    "SACK_MODE",
    "HEARTBEAT_INTERVAL",
    "CONNECTION_LIFE",
    "MAX_CONNECTIONS",
    "TRACK_STATS_LOG_INTERVAL",
    "TRACK_SPEED_LIMIT_KMH",
    "TRACK_MQTT_ENABLED",
    "TRACK_MQTT_HOST",
    "TRACK_MQTT_PORT",
    "TRACK_MQTT_USER",
    "TRACK_MQTT_PASS",
    "TRACK_MQTT_TOPIC",
    "TRACK_MQTT_CONN_DELAY",
    "TRACK_STATS_API_ENABLED",
    "TRACK_STATS_API_PORT",
    "TRACK_DEBUG",
    "TRACK_LOG_FORMAT",
    "TRACK_LOG_JSON_FILE",
    "TRACK_LOG_HUMAN_OUTPUT",
    "TRACK_PERF_TRACKING",
    "TRACK_PERF_THRESHOLD_MS",
)


@pytest.fixture
def clean_environ(monkeypatch):
    """
    Monkeypatch with every gateway variable removed.

    Set values through the returned monkeypatch (even before a dotenv load)
    so they are restored after the test.
    """
    for name in GATEWAY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
