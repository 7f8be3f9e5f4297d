"""@Track frame codec: stream framing, decoding and encoding.

Frames are ASCII text, ``<prefix><body>$``. A single TCP read may carry a
partial frame, exactly one frame, or several frames back to back, so the
splitting step and the decoding step are kept apart.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterator
from dataclasses import dataclass

from track_gateway.const import (
    ACK_PREFIX,
    BUFF_PREFIX,
    FIELD_SEPARATOR,
    FRAME_TERMINATOR,
    MAX_BUFFER_SIZE,
    MIN_FRAME_FIELDS,
    RESP_PREFIX,
)
from track_gateway.logging_abstraction import get_logger
from track_gateway.protocol.exceptions import (
    FrameDecodeError,
    MalformedAckError,
    MalformedRespError,
    MissingTerminatorError,
    UnknownFrameTypeError,
)
from track_gateway.structs import FRAME_PREFIXES, Frame, FrameKind

__all__ = [
    "DecodeResult",
    "FrameBuffer",
    "decode",
    "encode",
    "extract_frames",
    "iter_frames",
    "try_decode",
]

logger = get_logger(__name__)


def _as_text(buffer: str | bytes | bytearray) -> str:
    if isinstance(buffer, str):
        return buffer
    return bytes(buffer).decode("ascii", errors="replace")


def iter_frames(buffer: str | bytes | bytearray) -> Iterator[str]:
    """Yield every terminated frame in ``buffer``, in order.

    Each yielded frame is whitespace-trimmed and ends with exactly one
    terminator. Empty fragments (``$$``, trailing CR/LF) are skipped, and an
    unterminated tail is never yielded.
    """
    *complete, _tail = _as_text(buffer).split(FRAME_TERMINATOR)
    for part in complete:
        cleaned = part.strip()
        if cleaned:
            yield cleaned + FRAME_TERMINATOR


def extract_frames(buffer: str | bytes | bytearray) -> tuple[list[str], str]:
    """Split ``buffer`` into complete frames and the unterminated leftover.

    The function keeps no state: the caller re-submits the leftover in front
    of the next read (see ``FrameBuffer``).

    Example:
        >>> extract_frames("+ACK:A,B,C,D,E,F$+ACK:G")
        (['+ACK:A,B,C,D,E,F$'], '+ACK:G')

    """
    text = _as_text(buffer)
    leftover = text.rsplit(FRAME_TERMINATOR, 1)[-1] if FRAME_TERMINATOR in text else text
    if not leftover.strip():
        leftover = ""
    return list(iter_frames(text)), leftover


class FrameBuffer:
    r"""Accumulate TCP reads and hand back complete frame texts.

    Security: a peer that never sends a terminator would grow the buffer
    forever, so a pending tail larger than ``MAX_BUFFER_SIZE`` is discarded.

    Example:
        buf = FrameBuffer()
        assert buf.feed(b"+ACK:GTHBD,80200A0303") == []
        assert buf.feed(b",865585040014007,GL33CG,20190517022529,0029$") == [
            "+ACK:GTHBD,80200A0303,865585040014007,GL33CG,20190517022529,0029$"
        ]

    """

    MAX_BUFFER_SIZE: int = MAX_BUFFER_SIZE

    def __init__(self) -> None:
        self.pending: str = ""

    def feed(self, data: bytes | str) -> list[str]:
        """Add ``data`` to the pending tail and return newly completed frames."""
        frames, self.pending = extract_frames(self.pending + _as_text(data))
        if len(self.pending) > self.MAX_BUFFER_SIZE:
            logger.warning(
                "Discarding unterminated data over buffer limit",
                extra={
                    "pending_size": len(self.pending),
                    "max_size": self.MAX_BUFFER_SIZE,
                },
            )
            self.pending = ""
        return frames

    def clear(self) -> None:
        self.pending = ""


def _identify_kind(text: str) -> FrameKind | None:
    for prefix, kind in FRAME_PREFIXES.items():
        if text.startswith(prefix):
            return kind
    return None


def _split_body(text: str, prefix: str) -> list[str]:
    return text[len(prefix) :].removesuffix(FRAME_TERMINATOR).split(FIELD_SEPARATOR)


def _decode_ack(text: str) -> Frame:
    fields = _split_body(text, ACK_PREFIX)
    if len(fields) < MIN_FRAME_FIELDS:
        raise MalformedAckError(text, f"{len(fields)} fields, need {MIN_FRAME_FIELDS}")
    command_word, protocol_version, device_id, device_name, send_time, sequence_number = fields[:6]
    return Frame(
        kind=FrameKind.ACK,
        command_word=command_word,
        protocol_version=protocol_version,
        device_id=device_id,
        device_name=device_name,
        send_time=send_time,
        sequence_number=sequence_number,
        raw_text=text,
    )


def _decode_resp(text: str) -> Frame:
    fields = _split_body(text, RESP_PREFIX)
    if len(fields) < MIN_FRAME_FIELDS:
        raise MalformedRespError(text, f"{len(fields)} fields, need {MIN_FRAME_FIELDS}")
    # report bodies vary by command: send time and count are anchored at the end
    return Frame(
        kind=FrameKind.RESP,
        command_word=fields[0],
        protocol_version=fields[1],
        device_id=fields[2],
        device_name=fields[3],
        send_time=fields[-2],
        sequence_number=fields[-1],
        raw_text=text,
    )


def _decode_buff(text: str) -> Frame:
    # +BUFF is a buffered replay of a +RESP report
    resp = _decode_resp(RESP_PREFIX + text[len(BUFF_PREFIX) :])
    return dataclasses.replace(resp, kind=FrameKind.BUFF, raw_text=text)


def decode(text: str) -> Frame:
    """Decode one frame text into a ``Frame``.

    Raises:
        MissingTerminatorError: text does not end with ``$``
        UnknownFrameTypeError: unknown prefix, or a server-side ``+SACK``
        MalformedAckError: ``+ACK`` with fewer than 6 fields
        MalformedRespError: ``+RESP``/``+BUFF`` with fewer than 6 fields

    """
    clean = text.strip()
    if not clean.endswith(FRAME_TERMINATOR):
        raise MissingTerminatorError(clean)

    kind = _identify_kind(clean)
    if kind is FrameKind.ACK:
        return _decode_ack(clean)
    if kind is FrameKind.RESP:
        return _decode_resp(clean)
    if kind is FrameKind.BUFF:
        return _decode_buff(clean)
    if kind is FrameKind.SACK:
        raise UnknownFrameTypeError(clean, "server acknowledgements are not accepted from devices")
    raise UnknownFrameTypeError(clean)


@dataclass(frozen=True, slots=True)
class DecodeResult:
    """Outcome of ``try_decode``: exactly one of ``frame`` / ``error`` is set."""

    frame: Frame | None = None
    error: FrameDecodeError | None = None

    @property
    def ok(self) -> bool:
        return self.frame is not None


def try_decode(text: str) -> DecodeResult:
    """Non-raising ``decode`` for the connection loop."""
    try:
        return DecodeResult(frame=decode(text))
    except FrameDecodeError as exc:
        return DecodeResult(error=exc)


def encode(frame: Frame) -> str:
    """Render a device frame back to wire text.

    ``+ACK`` frames are rebuilt from their six fields. An ``+ACK`` that
    arrived with more than six fields, and every report frame, carries
    fields the gateway does not parse, so the original text is returned
    and ``decode(encode(frame)) == frame`` holds.
    """
    if frame.kind is FrameKind.ACK and len(frame.body_fields) > MIN_FRAME_FIELDS:
        return frame.raw_text
    if frame.kind is FrameKind.ACK:
        fields = (
            frame.command_word,
            frame.protocol_version,
            frame.device_id,
            frame.device_name,
            frame.send_time,
            frame.sequence_number,
        )
        return f"{ACK_PREFIX}{FIELD_SEPARATOR.join(fields)}{FRAME_TERMINATOR}"
    if frame.kind in (FrameKind.RESP, FrameKind.BUFF):
        return frame.raw_text
    msg = f"Cannot encode frame of kind {frame.kind}; use the ack builder for server frames"
    raise ValueError(msg)
