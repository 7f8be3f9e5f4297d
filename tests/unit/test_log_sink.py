"""
Unit tests for the logging event sink.
"""

from unittest.mock import patch

import pytest

from track_gateway.protocol.frame_codec import decode
from track_gateway.router import CommandCategory
from track_gateway.sinks import LoggingSink


@pytest.fixture
def mock_logger():
    with patch("track_gateway.sinks.log_sink.logger") as mock_log:
        yield mock_log


class TestLoggingSink:
    """Tests for LoggingSink hooks"""

    @pytest.mark.asyncio
    async def test_heartbeat_is_debug(self, session, heartbeat_frame, mock_logger):
        """Test that heartbeats only log at debug level"""
        sink = LoggingSink()

        await sink.on_frame(session, CommandCategory.HEARTBEAT, heartbeat_frame)

        mock_logger.debug.assert_called_once()
        mock_logger.info.assert_not_called()
        mock_logger.warning.assert_not_called()

    @pytest.mark.asyncio
    async def test_alert_carries_severity(self, session, power_failure_frame, mock_logger):
        """Test that alert categories log a warning with severity"""
        sink = LoggingSink()

        await sink.on_frame(session, CommandCategory.POWER_FAILURE, power_failure_frame)

        mock_logger.warning.assert_called_once()
        message = mock_logger.warning.call_args.args[0]
        extra = mock_logger.warning.call_args.kwargs["extra"]
        assert message == "Power failure alert"
        assert extra["severity"] == "high"
        assert extra["sequence_number"] == "0032"
        assert "sent_at_local" in extra

    @pytest.mark.asyncio
    async def test_location_within_limit(self, session, fixed_report_frame, mock_logger):
        """Test that a normal location report logs info and no speed warning"""
        sink = LoggingSink(speed_limit_kmh=120)

        await sink.on_frame(session, CommandCategory.LOCATION_REPORT, fixed_report_frame)

        mock_logger.info.assert_called_once()
        mock_logger.warning.assert_not_called()

    @pytest.mark.asyncio
    async def test_speed_limit_exceeded(self, session, speeding_report_frame, mock_logger):
        """Test that speeding over the limit logs a high severity warning"""
        sink = LoggingSink(speed_limit_kmh=120)

        await sink.on_frame(session, CommandCategory.LOCATION_REPORT, speeding_report_frame)

        mock_logger.warning.assert_called_once()
        assert mock_logger.warning.call_args.args[0] == "Speed limit exceeded"
        extra = mock_logger.warning.call_args.kwargs["extra"]
        assert extra["speed_kmh"] == 131.0
        assert extra["limit_kmh"] == 120
        assert extra["severity"] == "high"

    @pytest.mark.asyncio
    async def test_bad_send_time_has_no_local_time(self, session, mock_logger):
        """Test that an unparseable send time is logged without local time"""
        frame = decode("+RESP:GTXYZ,80200A0303,865585040014007,GL33CG,notatime,0040$")
        sink = LoggingSink()

        await sink.on_frame(session, CommandCategory.UNMAPPED, frame)

        extra = mock_logger.info.call_args.kwargs["extra"]
        assert "sent_at_local" not in extra
        assert "severity" not in extra

    @pytest.mark.asyncio
    async def test_identified_and_disconnect(self, session, heartbeat_frame, mock_logger):
        """Test identification and disconnect log lines"""
        sink = LoggingSink()
        _ = session.identify(heartbeat_frame.device_id, heartbeat_frame.device_name)
        _ = session.record_frame()

        await sink.on_device_identified(session, heartbeat_frame)
        await sink.on_disconnect(session)

        first, second = mock_logger.info.call_args_list
        assert first.kwargs["extra"]["device_id"] == "865585040014007"
        assert second.kwargs["extra"]["message_count"] == 1
