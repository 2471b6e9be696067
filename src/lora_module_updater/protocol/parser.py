"""Gateway-to-host response messages and their parsing."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Union

from ..errors import SerializationError
from ..utils.varint import Reader, encode_varint, zigzag_encode

MOISTURE_ZONES = 4


class GatewayCommand(IntEnum):
    """Variant tags for gateway-to-host messages."""

    PING_RESPONSE = 0
    SOIL_SENSOR_MOISTURE = 1
    OTA_STATUS = 2
    OTA_INIT_ACK = 3
    OTA_ABORT_ACK = 4
    OTA_DONE_ACK = 5


@dataclass(frozen=True)
class PingResponse:
    command = GatewayCommand.PING_RESPONSE


@dataclass(frozen=True)
class SoilSensorMoisture:
    """Raw moisture readings, one per probe zone."""

    zones: tuple[int, ...]

    command = GatewayCommand.SOIL_SENSOR_MOISTURE


@dataclass(frozen=True)
class OtaStatus:
    """Module-side view of the OTA session.

    ``last_acked_index`` is -1 until the module has stored a block.
    ``nacked_indices`` lists blocks the module wants sent again.
    """

    in_progress: bool
    last_acked_index: int = -1
    nacked_indices: tuple[int, ...] = field(default_factory=tuple)

    command = GatewayCommand.OTA_STATUS


@dataclass(frozen=True)
class OtaInitAck:
    command = GatewayCommand.OTA_INIT_ACK


@dataclass(frozen=True)
class OtaAbortAck:
    command = GatewayCommand.OTA_ABORT_ACK


@dataclass(frozen=True)
class OtaDoneAck:
    command = GatewayCommand.OTA_DONE_ACK


GatewayPacket = Union[
    PingResponse,
    SoilSensorMoisture,
    OtaStatus,
    OtaInitAck,
    OtaAbortAck,
    OtaDoneAck,
]


def parse_soil_sensor(reader: Reader) -> SoilSensorMoisture:
    return SoilSensorMoisture(
        zones=tuple(reader.read_varint() for _ in range(MOISTURE_ZONES))
    )


def parse_ota_status(reader: Reader) -> OtaStatus:
    """Parse the body of an OtaStatus message.

    Layout: bool ``in_progress``, zig-zag ``last_acked_index``, then a
    varint count followed by that many varint block indices.
    """
    in_progress = reader.read_bool()
    last_acked_index = reader.read_signed()
    count = reader.read_varint()
    if count > reader.remaining:
        raise SerializationError(
            f"NACK list claims {count} entries but only {reader.remaining} bytes remain"
        )
    nacked = tuple(reader.read_varint() for _ in range(count))
    return OtaStatus(
        in_progress=in_progress,
        last_acked_index=last_acked_index,
        nacked_indices=nacked,
    )


_BODY_PARSERS = {
    GatewayCommand.PING_RESPONSE: lambda reader: PingResponse(),
    GatewayCommand.SOIL_SENSOR_MOISTURE: parse_soil_sensor,
    GatewayCommand.OTA_STATUS: parse_ota_status,
    GatewayCommand.OTA_INIT_ACK: lambda reader: OtaInitAck(),
    GatewayCommand.OTA_ABORT_ACK: lambda reader: OtaAbortAck(),
    GatewayCommand.OTA_DONE_ACK: lambda reader: OtaDoneAck(),
}


def parse_response(payload: bytes) -> GatewayPacket:
    """Decode a de-framed payload into a gateway message.

    Raises:
        SerializationError: If the tag is unknown, the body is truncated,
            or bytes are left over.
    """
    reader = Reader(payload)
    tag = reader.read_varint()
    try:
        command = GatewayCommand(tag)
    except ValueError as e:
        raise SerializationError(f"Unknown gateway message tag {tag}") from e

    message = _BODY_PARSERS[command](reader)
    reader.expect_end()
    return message


def serialize_response(packet: GatewayPacket) -> bytes:
    """Serialize a gateway message.

    The host never sends these; module simulators and diagnostics use it.
    """
    body = bytearray(encode_varint(packet.command))
    if isinstance(packet, SoilSensorMoisture):
        if len(packet.zones) != MOISTURE_ZONES:
            raise SerializationError(
                f"Expected {MOISTURE_ZONES} moisture zones, got {len(packet.zones)}"
            )
        for value in packet.zones:
            body += encode_varint(value)
    elif isinstance(packet, OtaStatus):
        body.append(1 if packet.in_progress else 0)
        body += encode_varint(zigzag_encode(packet.last_acked_index))
        body += encode_varint(len(packet.nacked_indices))
        for index in packet.nacked_indices:
            body += encode_varint(index)
    return bytes(body)
