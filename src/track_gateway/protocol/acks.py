"""Server acknowledgement (+SACK) generation.

Pure functions: no I/O, no state. ``ack_for`` is the single policy gate the
server goes through, with the configured ack mode passed in explicitly.
"""

from __future__ import annotations

from track_gateway.const import (
    DEFAULT_SEQUENCE_NUMBER,
    FIELD_SEPARATOR,
    FRAME_TERMINATOR,
    HEARTBEAT_COMMAND,
    SACK_PREFIX,
    SACK_VERSION_LENGTH,
)
from track_gateway.structs import AckMode, Frame, FrameKind

__all__ = [
    "AckMode",
    "ack_for",
    "build_ack",
    "is_heartbeat",
    "needs_ack",
]


def is_heartbeat(frame: Frame) -> bool:
    return frame.command_word == HEARTBEAT_COMMAND


def needs_ack(frame: Frame) -> bool:
    """Whether the device expects a +SACK for ``frame``.

    Heartbeats and every report (+RESP/+BUFF) are acknowledged. Other +ACK
    frames are not.
    """
    if frame.kind is FrameKind.ACK:
        return is_heartbeat(frame)
    return frame.kind in (FrameKind.RESP, FrameKind.BUFF)


def build_ack(frame: Frame) -> str:
    """Build the +SACK text for ``frame``.

    Heartbeat: ``+SACK:GTHBD,<version[:6]>,<count>$``.
    Anything else: ``+SACK:<count>$``.
    A missing count number is sent as ``0000``.
    """
    count = frame.sequence_number or DEFAULT_SEQUENCE_NUMBER
    if is_heartbeat(frame) and frame.protocol_version:
        fields = (frame.command_word, frame.protocol_version[:SACK_VERSION_LENGTH], count)
        return f"{SACK_PREFIX}{FIELD_SEPARATOR.join(fields)}{FRAME_TERMINATOR}"
    return f"{SACK_PREFIX}{count}{FRAME_TERMINATOR}"


def ack_for(frame: Frame, *, enabled: bool, mode: AckMode | int) -> str | None:
    """Ack text to send for ``frame``, or None when nothing should be sent.

    ``AckMode.NEVER`` and a disabled ack switch both suppress every ack.
    ``VERIFY_SEQUENCE`` and ``ALWAYS_NO_VERIFY`` produce the same text; the
    device is the one that checks the echoed count number.
    """
    if not enabled or AckMode(mode) is AckMode.NEVER:
        return None
    if not needs_ack(frame):
        return None
    return build_ack(frame)
