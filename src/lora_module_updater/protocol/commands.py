"""Host-to-gateway request messages and their serialization.

Each request is a dataclass tagged with a single varint variant ID. Field
layout follows the tag in declaration order: unsigned integers as varints,
fixed-size arrays raw, byte strings length-prefixed, optionals as a
``0``/``1`` presence byte followed by the value.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Union

from ..errors import SerializationError
from ..utils.varint import Reader, encode_varint

SHA256_SIZE = 32


class HostCommand(IntEnum):
    """Variant tags for host-to-gateway messages."""

    PING = 0
    SOIL_SENSOR = 1
    GET_OTA_STATUS = 2
    OTA_ABORT = 3
    OTA_INIT = 4
    OTA_DATA = 5
    OTA_DONE = 6


@dataclass(frozen=True)
class PingRequest:
    """Liveness check, answered by ``PingResponse``."""

    command = HostCommand.PING


@dataclass(frozen=True)
class SoilSensorRequest:
    """Read the moisture probes of a remote sensor node."""

    destination_address: int

    command = HostCommand.SOIL_SENSOR


@dataclass(frozen=True)
class GetOtaStatus:
    command = HostCommand.GET_OTA_STATUS


@dataclass(frozen=True)
class OtaAbort:
    command = HostCommand.OTA_ABORT


@dataclass(frozen=True)
class OtaInit:
    """Announce a new firmware image to the module."""

    image_len: int
    sha256: bytes
    block_size: int
    block_count: int
    dest_addr: int | None = None

    command = HostCommand.OTA_INIT

    def __repr__(self) -> str:
        return (
            f"OtaInit(image_len={self.image_len}, sha256={self.sha256.hex()}, "
            f"block_size={self.block_size}, block_count={self.block_count}, "
            f"dest_addr={self.dest_addr})"
        )


@dataclass(frozen=True)
class OtaData:
    """One block of the firmware image."""

    index: int
    data: bytes

    command = HostCommand.OTA_DATA

    def __repr__(self) -> str:
        return f"OtaData(index={self.index}, data_len={len(self.data)})"


@dataclass(frozen=True)
class OtaDone:
    command = HostCommand.OTA_DONE


HostPacket = Union[
    PingRequest,
    SoilSensorRequest,
    GetOtaStatus,
    OtaAbort,
    OtaInit,
    OtaData,
    OtaDone,
]


def serialize_request(packet: HostPacket) -> bytes:
    """Serialize a host request to its wire payload (before framing).

    Raises:
        SerializationError: If a field is out of range or the packet type
            is not a host request.
    """
    try:
        body = bytearray(encode_varint(packet.command))
    except AttributeError as e:
        raise SerializationError(f"Not a host request: {packet!r}") from e

    if isinstance(packet, SoilSensorRequest):
        body += encode_varint(packet.destination_address)
    elif isinstance(packet, OtaInit):
        if len(packet.sha256) != SHA256_SIZE:
            raise SerializationError(
                f"sha256 must be {SHA256_SIZE} bytes, got {len(packet.sha256)}"
            )
        body += encode_varint(packet.image_len)
        body += packet.sha256
        body += encode_varint(packet.block_size)
        body += encode_varint(packet.block_count)
        if packet.dest_addr is None:
            body.append(0)
        else:
            body.append(1)
            body += encode_varint(packet.dest_addr)
    elif isinstance(packet, OtaData):
        body += encode_varint(packet.index)
        body += encode_varint(len(packet.data))
        body += packet.data
    return bytes(body)


def build_ota_init(
    image: bytes,
    sha256: bytes,
    block_size: int,
    block_count: int,
    dest_addr: int | None = None,
) -> OtaInit:
    """Build an OtaInit request for an image.

    Args:
        image: The complete firmware image.
        sha256: SHA-256 digest of ``image``.
        block_size: Bytes per block.
        block_count: Number of blocks the image is split into.
        dest_addr: Optional radio address of the node to update.
    """
    if block_size < 1:
        raise ValueError(f"Block size must be positive, got {block_size}")
    if dest_addr is not None and dest_addr < 0:
        raise ValueError(f"Destination address must be >= 0, got {dest_addr}")
    return OtaInit(
        image_len=len(image),
        sha256=bytes(sha256),
        block_size=block_size,
        block_count=block_count,
        dest_addr=dest_addr,
    )


def parse_request(payload: bytes) -> HostPacket:
    """Decode a host request payload.

    The host only sends these; module simulators and link sniffers use
    this to read what went out on the wire.

    Raises:
        SerializationError: If the payload is not a well-formed request.
    """
    reader = Reader(payload)
    tag = reader.read_varint()
    try:
        command = HostCommand(tag)
    except ValueError as e:
        raise SerializationError(f"Unknown host message tag {tag}") from e

    if command is HostCommand.PING:
        packet: HostPacket = PingRequest()
    elif command is HostCommand.SOIL_SENSOR:
        packet = SoilSensorRequest(destination_address=reader.read_varint())
    elif command is HostCommand.GET_OTA_STATUS:
        packet = GetOtaStatus()
    elif command is HostCommand.OTA_ABORT:
        packet = OtaAbort()
    elif command is HostCommand.OTA_INIT:
        image_len = reader.read_varint()
        sha256 = reader.read_bytes(SHA256_SIZE)
        block_size = reader.read_varint()
        block_count = reader.read_varint()
        dest_addr = reader.read_varint() if reader.read_bool() else None
        packet = OtaInit(
            image_len=image_len,
            sha256=sha256,
            block_size=block_size,
            block_count=block_count,
            dest_addr=dest_addr,
        )
    elif command is HostCommand.OTA_DATA:
        packet = OtaData(index=reader.read_varint(), data=reader.read_vec())
    else:
        packet = OtaDone()
    reader.expect_end()
    return packet
