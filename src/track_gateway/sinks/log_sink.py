"""Event sink that writes routed gateway events to the structured log."""

from __future__ import annotations

import logging

from track_gateway.logging_abstraction import get_logger
from track_gateway.protocol.report_parser import parse_location
from track_gateway.router import ALERT_SEVERITY, CommandCategory
from track_gateway.session import Session
from track_gateway.structs import Frame
from track_gateway.utils import utc_to_local

__all__ = ["LoggingSink"]

logger = get_logger(__name__)

# category -> (level, message); heartbeats are debug-only noise
CATEGORY_LOG: dict[CommandCategory, tuple[int, str]] = {
    CommandCategory.HEARTBEAT: (logging.DEBUG, "Heartbeat received"),
    CommandCategory.LOCATION_REPORT: (logging.INFO, "Location report received"),
    CommandCategory.POWER_FAILURE: (logging.WARNING, "Power failure alert"),
    CommandCategory.BATTERY_LOW: (logging.WARNING, "Battery low alert"),
    CommandCategory.TEMPERATURE: (logging.INFO, "Temperature report"),
    CommandCategory.JAMMING: (logging.WARNING, "Jamming detection alert"),
    CommandCategory.GEOFENCE: (logging.INFO, "Geofence event"),
    CommandCategory.UNMAPPED: (logging.INFO, "Unmapped command received"),
}

_LEVEL_METHODS = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warning",
}


class LoggingSink:
    """Log one line per routed event, with alert severity where it applies."""

    def __init__(self, speed_limit_kmh: float = 120) -> None:
        self.speed_limit_kmh = speed_limit_kmh

    async def on_device_identified(self, session: Session, frame: Frame) -> None:
        logger.info(
            " New device connected",
            extra={
                "connection_id": session.connection_id,
                "device_id": session.device_id,
                "device_name": session.device_name,
                "protocol_version": frame.protocol_version,
            },
        )

    async def on_frame(self, session: Session, category: CommandCategory, frame: Frame) -> None:
        level, message = CATEGORY_LOG[category]
        extra: dict[str, object] = {
            "connection_id": session.connection_id,
            "device_id": frame.device_id,
            "command_word": frame.command_word,
            "send_time": frame.send_time,
            "sequence_number": frame.sequence_number,
        }
        sent_at = frame.sent_at
        if sent_at is not None:
            extra["sent_at_local"] = utc_to_local(sent_at).isoformat()
        if category in ALERT_SEVERITY:
            extra["severity"] = ALERT_SEVERITY[category]
        getattr(logger, _LEVEL_METHODS[level])(message, extra=extra)

        if category is CommandCategory.LOCATION_REPORT:
            self._check_speed(session, frame)

    def _check_speed(self, session: Session, frame: Frame) -> None:
        report = parse_location(frame)
        if report is None or report.speed is None or report.speed <= self.speed_limit_kmh:
            return
        logger.warning(
            "Speed limit exceeded",
            extra={
                "connection_id": session.connection_id,
                "device_id": report.device_id,
                "speed_kmh": report.speed,
                "limit_kmh": self.speed_limit_kmh,
                "latitude": report.latitude,
                "longitude": report.longitude,
                "severity": "high",
            },
        )

    async def on_disconnect(self, session: Session) -> None:
        logger.info(
            " Device disconnected",
            extra={
                "connection_id": session.connection_id,
                "device_id": session.device_id,
                "duration_seconds": round(session.duration_seconds, 1),
                "message_count": session.message_count,
            },
        )
