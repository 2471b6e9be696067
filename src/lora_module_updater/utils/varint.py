"""Variable-length integer helpers for the message schema.

Unsigned integers use LEB128: seven value bits per byte, least significant
group first, high bit set on every byte except the last. Signed integers
are zig-zag mapped onto unsigned ones before encoding, so small negative
values stay short (``-1`` encodes as ``0x01``).
"""

from __future__ import annotations

from ..errors import SerializationError

MAX_VARINT_BYTES = 10  # enough for a 64-bit value


def encode_varint(value: int) -> bytes:
    """Encode a non-negative integer as LEB128."""
    if value < 0:
        raise SerializationError(f"varint cannot encode negative value {value}")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def zigzag_encode(value: int) -> int:
    return (value << 1) if value >= 0 else ((-value) << 1) - 1


def zigzag_decode(value: int) -> int:
    return (value >> 1) if not value & 1 else -((value + 1) >> 1)


class Reader:
    """Cursor over a serialized message.

    Every ``read_*`` method raises :class:`SerializationError` when the
    buffer ends early.
    """

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def read_byte(self) -> int:
        if self._pos >= len(self._data):
            raise SerializationError("unexpected end of message")
        value = self._data[self._pos]
        self._pos += 1
        return value

    def read_bytes(self, count: int) -> bytes:
        if count > self.remaining:
            raise SerializationError(
                f"unexpected end of message: need {count} bytes, have {self.remaining}"
            )
        chunk = self._data[self._pos : self._pos + count]
        self._pos += count
        return chunk

    def read_varint(self) -> int:
        value = 0
        for shift_index in range(MAX_VARINT_BYTES):
            byte = self.read_byte()
            value |= (byte & 0x7F) << (7 * shift_index)
            if not byte & 0x80:
                return value
        raise SerializationError("varint is too long")

    def read_signed(self) -> int:
        return zigzag_decode(self.read_varint())

    def read_bool(self) -> bool:
        byte = self.read_byte()
        if byte not in (0, 1):
            raise SerializationError(f"invalid bool byte 0x{byte:02X}")
        return bool(byte)

    def read_vec(self) -> bytes:
        return self.read_bytes(self.read_varint())

    def expect_end(self) -> None:
        if self.remaining:
            raise SerializationError(f"{self.remaining} trailing bytes after message")
