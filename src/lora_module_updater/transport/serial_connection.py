"""Serial connection to the LoRa gateway module.

The gateway is a USB-UART bridge exposed as a serial port (``/dev/ttyACM0``
on Linux, ``COMx`` on Windows). Every message travels as one frame of the
byte-stuffing codec in :mod:`..protocol.framing`.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import serial

from ..errors import ChannelError, InvalidResponse, ReadTimeout
from ..protocol.commands import HostPacket, PingRequest, serialize_request
from ..protocol.framing import FrameDecoder, encode_frame
from ..protocol.parser import GatewayPacket, PingResponse, parse_response

logger = logging.getLogger(__name__)

DEFAULT_BAUDRATE = 115200
READ_TIMEOUT = 0.1  # seconds


@dataclass
class PortInfo:
    """Where the driver is connected."""

    path: str = ""
    baudrate: int = DEFAULT_BAUDRATE


class GatewayDriver:
    """Owns the serial port and exchanges framed messages over it.

    Usage::

        with GatewayDriver.open("/dev/ttyACM0") as gateway:
            gateway.ping()
            gateway.send(GetOtaStatus())
            status = gateway.receive(timeout=1.0)

    The driver is not thread-safe; one caller owns it at a time.
    """

    def __init__(
        self,
        port: serial.Serial,
        timeout: float = READ_TIMEOUT,
        info: PortInfo | None = None,
    ) -> None:
        self._port = port
        self._timeout = timeout
        # survives a timed-out receive so a frame split across calls stays whole
        self._decoder = FrameDecoder()
        self._info = info or PortInfo(
            path=getattr(port, "port", "") or "",
            baudrate=getattr(port, "baudrate", DEFAULT_BAUDRATE),
        )

    @classmethod
    def open(
        cls,
        path: str,
        baudrate: int = DEFAULT_BAUDRATE,
        timeout: float = READ_TIMEOUT,
    ) -> GatewayDriver:
        """Open the serial port and return a driver for it.

        Raises:
            ChannelError: If the port cannot be opened.
        """
        try:
            port = serial.Serial(path, baudrate, timeout=timeout)
            port.reset_input_buffer()
        except (serial.SerialException, OSError, ValueError) as e:
            raise ChannelError(f"Failed to open port {path} at {baudrate} baud: {e}") from e

        logger.info("Opened %s at %d baud", path, baudrate)
        return cls(port, timeout=timeout, info=PortInfo(path=path, baudrate=baudrate))

    @property
    def connected(self) -> bool:
        return bool(getattr(self._port, "is_open", False))

    @property
    def info(self) -> PortInfo:
        return self._info

    @property
    def timeout(self) -> float:
        return self._timeout

    def close(self) -> None:
        """Close the serial port."""
        if not self.connected:
            return
        try:
            self._port.close()
        except (serial.SerialException, OSError) as e:
            logger.warning("Error closing port: %s", e)
        finally:
            logger.info("Disconnected from %s", self._info.path)

    def __enter__(self) -> GatewayDriver:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def send(self, packet: HostPacket) -> None:
        """Serialize, frame and write one message.

        Raises:
            SerializationError: If the packet cannot be serialized.
            FrameOverflow: If the frame would exceed the maximum size.
            ChannelError: If the write fails.
        """
        frame = encode_frame(serialize_request(packet))
        logger.debug("TX %r: %s", packet, frame[:-1].hex(" "))
        try:
            self._port.write(frame)
            self._port.flush()
        except (serial.SerialException, OSError) as e:
            raise ChannelError(f"Failed to send {frame.hex(' ')}: {e}") from e

    def receive(self, timeout: float | None = None) -> GatewayPacket:
        """Read octets until a full frame arrives and parse it.

        Args:
            timeout: Seconds to wait for the terminator. Defaults to the
                driver's read timeout.

        Raises:
            ReadTimeout: If no complete frame arrives in time.
            FrameOverflow: If the incoming frame is malformed or too large.
            SerializationError: If the payload is not a known message.
            ChannelError: If the read fails.
        """
        if timeout is None:
            timeout = self._timeout
        deadline = time.monotonic() + timeout
        decoder = self._decoder

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ReadTimeout(
                    f"No frame from gateway within {timeout:.3f}s"
                )
            octet = self._read_octet(min(self._timeout, remaining))
            if not octet:
                continue
            payload = decoder.feed(octet[0])
            if payload is not None:
                break

        logger.debug("RX: %s", payload.hex(" "))
        return parse_response(payload)

    def discard_input(self) -> None:
        """Drop buffered input and any partially decoded frame.

        Raises:
            ChannelError: If the port cannot be flushed.
        """
        self._decoder.reset()
        try:
            self._port.reset_input_buffer()
        except (serial.SerialException, OSError) as e:
            raise ChannelError(f"Failed to flush {self._info.path}: {e}") from e

    def _read_octet(self, wait: float) -> bytes:
        """Block for at most ``wait`` seconds on a single octet."""
        try:
            if self._port.timeout != wait:
                self._port.timeout = wait
            return self._port.read(1)
        except (serial.SerialException, OSError) as e:
            raise ChannelError(f"Failed to read from {self._info.path}: {e}") from e

    def ping(self) -> float:
        """Check the gateway is alive.

        Returns:
            Round-trip time in seconds.

        Raises:
            InvalidResponse: If the gateway answers with anything but a
                ping response.
        """
        start = time.monotonic()
        self.send(PingRequest())
        response = self.receive()
        if not isinstance(response, PingResponse):
            raise InvalidResponse("PingResponse", response)
        return time.monotonic() - start
