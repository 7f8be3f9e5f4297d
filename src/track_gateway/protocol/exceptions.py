"""Exception types for @Track protocol errors.

Decode failures raise instead of returning None. Every decode error is
frame-local: the connection stays open and the next frame is processed.
"""

from __future__ import annotations

__all__ = [
    "FrameDecodeError",
    "MalformedAckError",
    "MalformedRespError",
    "MissingTerminatorError",
    "TrackProtocolError",
    "UnknownFrameTypeError",
]

# enough of a frame to recognise it in logs without dumping whole reports
PREVIEW_LENGTH = 32


class TrackProtocolError(Exception):
    """Base exception for all gateway protocol errors."""


class FrameDecodeError(TrackProtocolError):
    """Frame text cannot be decoded.

    Attributes:
        reason: Specific failure reason (e.g., "missing_terminator")
        data_preview: First characters of the offending frame text

    """

    reason: str = "decode_failed"

    def __init__(self, text: str = "", detail: str | None = None) -> None:
        self.data_preview: str = text[:PREVIEW_LENGTH] if text else ""
        self.detail: str | None = detail
        message = f"Frame decode failed: {self.reason}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class MissingTerminatorError(FrameDecodeError):
    """Frame text does not end with the '$' terminator."""

    reason = "missing_terminator"


class UnknownFrameTypeError(FrameDecodeError):
    """Frame prefix is not one the gateway decodes."""

    reason = "unknown_frame_type"


class MalformedAckError(FrameDecodeError):
    """+ACK body has fewer than the required fields."""

    reason = "malformed_ack"


class MalformedRespError(FrameDecodeError):
    """+RESP/+BUFF body has fewer than the required fields."""

    reason = "malformed_resp"
