"""Tests for the byte-stuffing frame codec."""

import pytest

from lora_module_updater.errors import FrameOverflow
from lora_module_updater.protocol.framing import (
    ESCAPE,
    MAX_FRAME_SIZE,
    MAX_PAYLOAD_SIZE,
    TERMINATOR,
    FrameDecoder,
    decode_frame,
    encode_frame,
)


def test_plain_bytes_pass_through():
    """Bytes below the escape marker are copied unchanged."""
    assert encode_frame(b"\x00\x01\x7F\xFD") == b"\x00\x01\x7F\xFD\xFF"


def test_empty_payload_is_just_terminator():
    assert encode_frame(b"") == bytes([TERMINATOR])


def test_reserved_bytes_are_escaped():
    """0xFE and 0xFF expand to (0xFE, b - 0xFE)."""
    assert encode_frame(b"\xFE") == b"\xFE\x00\xFF"
    assert encode_frame(b"\xFF") == b"\xFE\x01\xFF"


def test_terminator_only_at_end():
    """No 0xFF may appear before the last byte, whatever the payload."""
    payload = bytes(range(256))
    for start in range(0, 256, MAX_PAYLOAD_SIZE):
        frame = encode_frame(payload[start : start + MAX_PAYLOAD_SIZE])
        assert frame[-1] == TERMINATOR
        assert TERMINATOR not in frame[:-1]


def test_consecutive_reserved_bytes():
    """Runs of reserved bytes and a reserved byte at the very end survive."""
    payload = b"\x10\xFE\xFF\xFE\xFE\x20\xFF"
    frame = encode_frame(payload)
    assert frame == b"\x10\xFE\x00\xFE\x01\xFE\x00\xFE\x00\x20\xFE\x01\xFF"
    assert decode_frame(frame[:-1]) == payload


@pytest.mark.parametrize(
    "payload",
    [
        b"",
        b"\x00",
        bytes(range(MAX_PAYLOAD_SIZE)),
        bytes(range(256 - MAX_PAYLOAD_SIZE, 256)),
        b"\xFF" * MAX_PAYLOAD_SIZE,
        b"\xFE" * MAX_PAYLOAD_SIZE,
    ],
)
def test_roundtrip(payload):
    frame = encode_frame(payload)
    assert len(frame) <= MAX_FRAME_SIZE
    assert decode_frame(frame[:-1]) == payload


def test_encode_overflow():
    """A payload that cannot fit in one frame raises FrameOverflow."""
    with pytest.raises(FrameOverflow):
        encode_frame(b"\xFF" * (MAX_PAYLOAD_SIZE + 1))
    with pytest.raises(FrameOverflow):
        encode_frame(b"\x00" * MAX_FRAME_SIZE)


def test_largest_plain_payload_fits():
    frame = encode_frame(b"\x01" * (MAX_FRAME_SIZE - 1))
    assert len(frame) == MAX_FRAME_SIZE


def test_decoder_one_octet_at_a_time():
    """The incremental decoder yields the payload only on the terminator."""
    payload = b"\x01\xFE\x02\xFF"
    decoder = FrameDecoder()
    results = [decoder.feed(b) for b in encode_frame(payload)]
    assert results[:-1] == [None] * (len(results) - 1)
    assert results[-1] == payload


def test_decoder_handles_back_to_back_frames():
    decoder = FrameDecoder()
    stream = encode_frame(b"\x01") + encode_frame(b"\xFF\x02")
    payloads = [p for p in (decoder.feed(b) for b in stream) if p is not None]
    assert payloads == [b"\x01", b"\xFF\x02"]


def test_decoder_rejects_invalid_escape():
    decoder = FrameDecoder()
    decoder.feed(ESCAPE)
    with pytest.raises(FrameOverflow):
        decoder.feed(0x02)


def test_decoder_rejects_terminator_after_escape():
    decoder = FrameDecoder()
    decoder.feed(ESCAPE)
    with pytest.raises(FrameOverflow):
        decoder.feed(TERMINATOR)


def test_decoder_overflow_without_terminator():
    decoder = FrameDecoder(max_size=4)
    for b in b"\x01\x02\x03\x04":
        assert decoder.feed(b) is None
    with pytest.raises(FrameOverflow):
        decoder.feed(0x05)
    # the decoder starts over after an error
    assert decoder.feed(0x07) is None
    assert decoder.feed(TERMINATOR) == b"\x07"


def test_decode_ignores_dangling_escape():
    assert decode_frame(b"\x01\xFE") == b"\x01"


def test_decode_rejects_embedded_terminator():
    with pytest.raises(FrameOverflow):
        decode_frame(b"\x01\xFF\x02")
