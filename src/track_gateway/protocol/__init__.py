from track_gateway.protocol.acks import AckMode, ack_for, build_ack, needs_ack
from track_gateway.protocol.exceptions import (
    FrameDecodeError,
    MalformedAckError,
    MalformedRespError,
    MissingTerminatorError,
    TrackProtocolError,
    UnknownFrameTypeError,
)
from track_gateway.protocol.frame_codec import (
    DecodeResult,
    FrameBuffer,
    decode,
    encode,
    extract_frames,
    iter_frames,
    try_decode,
)

__all__ = [
    "AckMode",
    "DecodeResult",
    "FrameBuffer",
    "FrameDecodeError",
    "MalformedAckError",
    "MalformedRespError",
    "MissingTerminatorError",
    "TrackProtocolError",
    "UnknownFrameTypeError",
    "ack_for",
    "build_ack",
    "decode",
    "encode",
    "extract_frames",
    "iter_frames",
    "needs_ack",
    "try_decode",
]
