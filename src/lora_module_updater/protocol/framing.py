"""Byte-stuffing frame codec for the gateway serial link.

The serial stream has no message boundaries of its own, so every message
is followed by a reserved terminator octet. Payload octets that collide
with the reserved values are escaped::

    +---------------------------------------------+------------+
    |              escaped payload                | Terminator |
    |  b < 0xFE  ->  b                            |  1 byte    |
    |  b >= 0xFE ->  0xFE, b - 0xFE               |  0xFF      |
    +---------------------------------------------+------------+

- Terminator: 0xFF, never appears inside a frame
- Escape: 0xFE, always followed by 0x00 or 0x01
- Frames (terminator included) are at most 256 bytes in both directions
"""

from __future__ import annotations

from ..errors import FrameOverflow

TERMINATOR = 0xFF
ESCAPE = 0xFE
MAX_FRAME_SIZE = 256
# Largest payload that always fits, even if every byte needs escaping
MAX_PAYLOAD_SIZE = (MAX_FRAME_SIZE - 1) // 2


def encode_frame(payload: bytes) -> bytes:
    """Escape a payload and append the terminator.

    Args:
        payload: Serialized message bytes.

    Returns:
        The bytes to write to the serial port.

    Raises:
        FrameOverflow: If the frame would exceed ``MAX_FRAME_SIZE``.
    """
    frame = bytearray()
    for byte in payload:
        if byte >= ESCAPE:
            frame.append(ESCAPE)
            frame.append(byte - ESCAPE)
        else:
            frame.append(byte)
        if len(frame) >= MAX_FRAME_SIZE:
            raise FrameOverflow(
                f"Payload of {len(payload)} bytes does not fit in a "
                f"{MAX_FRAME_SIZE}-byte frame"
            )
    frame.append(TERMINATOR)
    return bytes(frame)


class FrameDecoder:
    """Incremental decoder fed one octet at a time.

    Usage::

        decoder = FrameDecoder()
        for byte in stream:
            payload = decoder.feed(byte)
            if payload is not None:
                handle(payload)

    After a complete frame or an error the decoder is ready for the next
    frame.
    """

    def __init__(self, max_size: int = MAX_FRAME_SIZE) -> None:
        self._max_size = max_size
        self._buffer = bytearray()
        self._escaped = False

    def reset(self) -> None:
        self._buffer.clear()
        self._escaped = False

    def flush(self) -> bytes:
        """Return whatever has been decoded so far and start a new frame.

        A pending escape octet is discarded.
        """
        payload = bytes(self._buffer)
        self.reset()
        return payload

    def feed(self, byte: int) -> bytes | None:
        """Consume one octet.

        Returns:
            The decoded payload when ``byte`` is the terminator, else None.

        Raises:
            FrameOverflow: On an oversized payload or a bad escape sequence.
        """
        if byte == TERMINATOR:
            if self._escaped:
                self.reset()
                raise FrameOverflow("Frame ended in the middle of an escape sequence")
            payload = bytes(self._buffer)
            self.reset()
            return payload

        if self._escaped:
            if byte > TERMINATOR - ESCAPE:
                self.reset()
                raise FrameOverflow(f"Invalid escaped octet 0x{byte:02X}")
            byte += ESCAPE
            self._escaped = False
        elif byte == ESCAPE:
            self._escaped = True
            return None

        if len(self._buffer) >= self._max_size:
            self.reset()
            raise FrameOverflow(
                f"Frame payload exceeds {self._max_size} bytes without a terminator"
            )
        self._buffer.append(byte)
        return None


def decode_frame(data: bytes) -> bytes:
    """Decode a frame whose terminator has already been stripped.

    A trailing escape octet with nothing after it is ignored.

    Raises:
        FrameOverflow: On an oversized payload or a bad escape sequence.
    """
    decoder = FrameDecoder()
    for byte in data:
        if byte == TERMINATOR:
            raise FrameOverflow("Terminator inside frame body")
        decoder.feed(byte)
    return decoder.flush()
