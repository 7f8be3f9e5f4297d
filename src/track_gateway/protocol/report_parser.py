"""Command-specific body parsing for report frames.

The core decoder only reads the fixed head and tail of a report. This module
reads the positional middle of GTFRI (fixed report) bodies for collaborators
that want the location.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel

from track_gateway.logging_abstraction import get_logger
from track_gateway.structs import Frame, FrameKind

__all__ = [
    "LocationReport",
    "parse_location",
    "parse_track_time",
]

logger = get_logger(__name__)

LOCATION_COMMAND = "GTFRI"
# GTFRI,ver,imei,name,report_id,report_type,number,hdop,speed,azimuth,altitude,lon,lat,gps_utc,
#   mcc,mnc,lac,cell_id,reserved,battery,...,send_time,count
MIN_LOCATION_FIELDS = 20


class LocationReport(BaseModel):
    """Position fix carried by a GTFRI report."""

    device_id: str
    latitude: float | None = None
    longitude: float | None = None
    speed: float | None = None
    heading: int | None = None
    altitude: float | None = None
    hdop: float | None = None
    gps_time: datetime | None = None
    mcc: str | None = None
    mnc: str | None = None
    lac: str | None = None
    cell_id: str | None = None
    battery_level: float | None = None
    report_time: datetime | None = None


def parse_track_time(value: str) -> datetime | None:
    """Parse a YYYYMMDDHHMMSS UTC timestamp, None when empty or malformed."""
    if len(value) != 14 or not value.isdigit():
        return None
    try:
        return datetime.strptime(value, "%Y%m%d%H%M%S").replace(tzinfo=UTC)
    except ValueError:
        return None


def _float(value: str) -> float | None:
    return float(value) if value.strip() else None


def _int(value: str) -> int | None:
    return int(value) if value.strip() else None


def parse_location(frame: Frame) -> LocationReport | None:
    """Extract the position fix from a GTFRI report frame.

    Returns None for other commands, for bodies too short to carry a fix, and
    for bodies whose numeric fields do not parse.
    """
    if frame.kind not in (FrameKind.RESP, FrameKind.BUFF) or frame.command_word != LOCATION_COMMAND:
        return None

    parts = frame.body_fields
    if len(parts) < MIN_LOCATION_FIELDS:
        logger.debug(
            "GTFRI body too short for a position fix",
            extra={"device_id": frame.device_id, "fields": len(parts)},
        )
        return None

    try:
        return LocationReport(
            device_id=frame.device_id,
            hdop=_float(parts[7]),
            speed=_float(parts[8]),
            heading=_int(parts[9]),
            altitude=_float(parts[10]),
            longitude=_float(parts[11]),
            latitude=_float(parts[12]),
            gps_time=parse_track_time(parts[13]),
            mcc=parts[14] or None,
            mnc=parts[15] or None,
            lac=parts[16] or None,
            cell_id=parts[17] or None,
            battery_level=_float(parts[19]),
            report_time=frame.sent_at,
        )
    except ValueError:
        logger.warning(
            "Could not parse location data",
            extra={"device_id": frame.device_id, "raw_text": frame.raw_text[:120]},
        )
        return None
