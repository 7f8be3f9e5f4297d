"""
Unit tests for the frame codec.

Tests stream splitting, buffering, decoding and encoding of @Track frames.
"""

import pytest

from track_gateway.protocol.exceptions import (
    FrameDecodeError,
    MalformedAckError,
    MalformedRespError,
    MissingTerminatorError,
    UnknownFrameTypeError,
)
from track_gateway.protocol.frame_codec import (
    FrameBuffer,
    decode,
    encode,
    extract_frames,
    iter_frames,
    try_decode,
)
from track_gateway.structs import Frame, FrameKind

from tests.unit.test_helpers import FIXED_REPORT_TEXT, HEARTBEAT_TEXT, make_heartbeat


class TestExtractFrames:
    """Tests for extract_frames / iter_frames"""

    def test_two_concatenated_heartbeats(self):
        """Test that one buffer with two heartbeats yields two frames"""
        frames, leftover = extract_frames(HEARTBEAT_TEXT + HEARTBEAT_TEXT)

        assert frames == [HEARTBEAT_TEXT, HEARTBEAT_TEXT]
        assert leftover == ""

    def test_frame_count_matches_terminator_count(self):
        """Test that N terminators give N frames, in order, each ending in one terminator"""
        texts = [f"+ACK:GTHBD,V,86558504001400{i},N,20190517022529,000{i}$" for i in range(5)]

        frames, _ = extract_frames("".join(texts))

        assert frames == texts
        assert all(f.endswith("$") and not f.endswith("$$") for f in frames)

    def test_partial_tail_is_leftover(self):
        """Test that an unterminated tail is returned as leftover, not as a frame"""
        frames, leftover = extract_frames(HEARTBEAT_TEXT + "+ACK:GTHBD,8020")

        assert frames == [HEARTBEAT_TEXT]
        assert leftover == "+ACK:GTHBD,8020"

    def test_no_terminator(self):
        """Test that a buffer without terminator yields no frames"""
        frames, leftover = extract_frames("+ACK:GTHBD")

        assert frames == []
        assert leftover == "+ACK:GTHBD"

    def test_empty_fragments_and_whitespace_discarded(self):
        """Test that $$ and CR/LF between frames are not frames"""
        frames, leftover = extract_frames(HEARTBEAT_TEXT + "$\r\n" + HEARTBEAT_TEXT + "\r\n")

        assert frames == [HEARTBEAT_TEXT, HEARTBEAT_TEXT]
        assert leftover == ""

    def test_accepts_bytes(self):
        """Test that byte buffers are decoded as ASCII"""
        frames, _ = extract_frames(HEARTBEAT_TEXT.encode())

        assert frames == [HEARTBEAT_TEXT]

    def test_iter_frames_is_restartable(self):
        """Test that each iter_frames call gives a fresh sequence"""
        buffer = HEARTBEAT_TEXT * 2

        assert list(iter_frames(buffer)) == list(iter_frames(buffer))
        assert len(list(iter_frames(buffer))) == 2


class TestFrameBuffer:
    """Tests for FrameBuffer stream helper"""

    def test_retains_partial_frame_across_feeds(self):
        """Test that a frame split over two reads is returned once complete"""
        buf = FrameBuffer()

        assert buf.feed(HEARTBEAT_TEXT[:20].encode()) == []
        assert buf.pending == HEARTBEAT_TEXT[:20]
        assert buf.feed(HEARTBEAT_TEXT[20:].encode()) == [HEARTBEAT_TEXT]
        assert buf.pending == ""

    def test_frame_and_a_half(self):
        """Test that a complete frame is returned and the rest kept"""
        buf = FrameBuffer()

        frames = buf.feed((HEARTBEAT_TEXT + HEARTBEAT_TEXT[:10]).encode())

        assert frames == [HEARTBEAT_TEXT]
        assert buf.pending == HEARTBEAT_TEXT[:10]

    def test_overflow_discards_pending(self):
        """Test that an unterminated tail over the limit is dropped"""
        buf = FrameBuffer()

        frames = buf.feed(b"A" * (FrameBuffer.MAX_BUFFER_SIZE + 1))

        assert frames == []
        assert buf.pending == ""

    def test_clear(self):
        """Test that clear drops pending data"""
        buf = FrameBuffer()
        _ = buf.feed(b"+ACK:GTHBD")

        buf.clear()

        assert buf.pending == ""


class TestDecode:
    """Tests for decode"""

    def test_decode_heartbeat(self):
        """Test the reference heartbeat frame"""
        frame = decode(HEARTBEAT_TEXT)

        assert frame.kind is FrameKind.ACK
        assert frame.command_word == "GTHBD"
        assert frame.protocol_version == "80200A0303"
        assert frame.device_id == "865585040014007"
        assert frame.device_name == "GL33CG"
        assert frame.send_time == "20190517022529"
        assert frame.sequence_number == "0029"
        assert frame.raw_text == HEARTBEAT_TEXT

    def test_decode_resp_anchors_last_two_fields(self):
        """Test that send time and count come from the end of a long report body"""
        frame = decode(FIXED_REPORT_TEXT)

        assert frame.kind is FrameKind.RESP
        assert frame.command_word == "GTFRI"
        assert frame.device_id == "865585040014007"
        assert frame.send_time == "20190517022529"
        assert frame.sequence_number == "0030"

    def test_decode_resp_minimal_body(self):
        """Test that exactly 6 fields is enough for a report"""
        frame = decode("+RESP:GTPFA,80200A0303,865585040014007,GL33CG,20190517022600,0032$")

        assert frame.send_time == "20190517022600"
        assert frame.sequence_number == "0032"

    def test_decode_buff_as_resp(self):
        """Test that +BUFF decodes like +RESP but keeps its kind and text"""
        text = FIXED_REPORT_TEXT.replace("+RESP:", "+BUFF:")

        frame = decode(text)

        assert frame.kind is FrameKind.BUFF
        assert frame.raw_text == text
        assert frame.command_word == "GTFRI"
        assert frame.sequence_number == "0030"

    def test_decode_strips_whitespace(self):
        """Test that surrounding whitespace is ignored"""
        frame = decode(f"  {HEARTBEAT_TEXT}\r\n")

        assert frame.raw_text == HEARTBEAT_TEXT

    def test_missing_terminator(self):
        """Test that text without $ raises MissingTerminatorError"""
        with pytest.raises(MissingTerminatorError) as exc_info:
            _ = decode(HEARTBEAT_TEXT[:-1])

        assert exc_info.value.reason == "missing_terminator"
        assert exc_info.value.data_preview == HEARTBEAT_TEXT[:32]

    def test_unknown_prefix(self):
        """Test that an unknown prefix raises UnknownFrameTypeError"""
        with pytest.raises(UnknownFrameTypeError):
            _ = decode("+XYZ:GTHBD,1,2,3,4,5$")

    def test_sack_from_wire_is_rejected(self):
        """Test that a server ack coming from a device is not decoded"""
        with pytest.raises(UnknownFrameTypeError):
            _ = decode("+SACK:GTHBD,80200A,0029$")

    def test_malformed_ack(self):
        """Test that an ack with fewer than 6 fields raises MalformedAckError"""
        with pytest.raises(MalformedAckError):
            _ = decode("+ACK:GTHBD,80200A0303,865585040014007,GL33CG,0029$")

    def test_malformed_resp(self):
        """Test that a report with fewer than 6 fields raises MalformedRespError"""
        with pytest.raises(MalformedRespError):
            _ = decode("+RESP:GTFRI,V,IMEI,NAME,0029$")

    def test_malformed_buff_is_malformed_resp(self):
        """Test that a short +BUFF raises MalformedRespError"""
        with pytest.raises(MalformedRespError):
            _ = decode("+BUFF:GTFRI,V,IMEI$")

    def test_decode_errors_share_base(self):
        """Test that every decode error is a FrameDecodeError"""
        for bad in ("no terminator", "+XYZ:a$", "+ACK:a,b$", "+RESP:a,b$"):
            with pytest.raises(FrameDecodeError):
                _ = decode(bad)

    def test_redecode_raw_text_round_trip(self):
        """Test that decoding raw_text again gives an equal frame"""
        for text in (HEARTBEAT_TEXT, FIXED_REPORT_TEXT, FIXED_REPORT_TEXT.replace("+RESP:", "+BUFF:")):
            frame = decode(text)
            assert decode(frame.raw_text) == frame


class TestTryDecode:
    """Tests for try_decode"""

    def test_success(self):
        """Test that a good frame gives ok result"""
        result = try_decode(HEARTBEAT_TEXT)

        assert result.ok
        assert result.error is None
        assert result.frame is not None
        assert result.frame.command_word == "GTHBD"

    def test_failure_is_returned_not_raised(self):
        """Test that a bad frame gives the error in the result"""
        result = try_decode("+RESP:GTFRI$")

        assert not result.ok
        assert result.frame is None
        assert isinstance(result.error, MalformedRespError)


class TestEncode:
    """Tests for encode"""

    def test_encode_ack(self):
        """Test that an ack frame is rebuilt from its fields"""
        assert encode(decode(HEARTBEAT_TEXT)) == HEARTBEAT_TEXT

    def test_encode_report_returns_raw_text(self):
        """Test that report frames keep their original text"""
        assert encode(decode(FIXED_REPORT_TEXT)) == FIXED_REPORT_TEXT

    def test_encode_sack_not_supported(self):
        """Test that server frames cannot be encoded from a Frame"""
        import dataclasses

        sack = dataclasses.replace(decode(HEARTBEAT_TEXT), kind=FrameKind.SACK)

        with pytest.raises(ValueError):
            _ = encode(sack)

    def test_encode_ack_with_extra_fields_keeps_raw_text(self):
        """Test that an ack with more than six fields is not truncated on encode"""
        text = make_heartbeat().removesuffix("$") + ",EXTRA$"
        frame = decode(text)

        assert len(frame.body_fields) == 7
        assert encode(frame) == text
        assert decode(encode(frame)) == frame

    def test_encode_ack_built_in_code(self):
        """Test that an ack frame without wire text is rebuilt from its fields"""
        frame = Frame(
            kind=FrameKind.ACK,
            command_word="GTHBD",
            protocol_version="80200A0303",
            device_id="865585040014007",
            device_name="GL33CG",
            send_time="20190517022529",
            sequence_number="0029",
            raw_text="",
        )

        assert encode(frame) == HEARTBEAT_TEXT
