"""Request/response contract spoken with the gateway.

Every request accepts exactly one response variant. Anything else is an
:class:`~.errors.InvalidResponse`, kept distinct from frames that fail to
parse at all.
"""

from __future__ import annotations

import logging
from typing import TypeVar

from .errors import InvalidResponse
from .protocol.commands import (
    GetOtaStatus,
    HostPacket,
    OtaAbort,
    OtaData,
    OtaDone,
    OtaInit,
    SoilSensorRequest,
)
from .protocol.parser import (
    GatewayPacket,
    OtaAbortAck,
    OtaInitAck,
    OtaStatus,
    SoilSensorMoisture,
)
from .transport.serial_connection import GatewayDriver

logger = logging.getLogger(__name__)

STATUS_TIMEOUT = 1.0
HANDSHAKE_TIMEOUT = 30.0  # abort/init can erase flash on the module
SENSOR_TIMEOUT = 1.0

R = TypeVar("R")


class SessionControl:
    """Typed request helpers on top of a :class:`GatewayDriver`."""

    def __init__(
        self,
        driver: GatewayDriver,
        handshake_timeout: float = HANDSHAKE_TIMEOUT,
    ) -> None:
        self._driver = driver
        self._handshake_timeout = handshake_timeout

    @property
    def driver(self) -> GatewayDriver:
        return self._driver

    def request(
        self,
        packet: HostPacket,
        expected: type[R],
        timeout: float | None = None,
    ) -> R:
        """Send ``packet`` and wait for a response of type ``expected``.

        Raises:
            ReadTimeout: If nothing arrives in time.
            InvalidResponse: If another variant arrives.
        """
        self._driver.send(packet)
        response = self._driver.receive(timeout)
        if not isinstance(response, expected):
            raise InvalidResponse(expected.__name__, response)
        return response

    def ping(self) -> float:
        return self._driver.ping()

    def get_ota_status(self, timeout: float = STATUS_TIMEOUT) -> OtaStatus:
        """Ask the module whether an OTA session is in progress."""
        return self.request(GetOtaStatus(), OtaStatus, timeout)

    def abort(self, timeout: float | None = None) -> OtaAbortAck:
        """Abort the module's current OTA session.

        The module may need tens of seconds to clean up, so the default
        timeout is the long handshake timeout.
        """
        if timeout is None:
            timeout = self._handshake_timeout
        return self.request(OtaAbort(), OtaAbortAck, timeout)

    def init(self, packet: OtaInit, timeout: float | None = None) -> OtaInitAck:
        """Start a new OTA session on the module."""
        if timeout is None:
            timeout = self._handshake_timeout
        return self.request(packet, OtaInitAck, timeout)

    def send_block(self, index: int, data: bytes) -> None:
        """Send one image block. Acknowledgment arrives via :meth:`poll`."""
        self._driver.send(OtaData(index=index, data=data))

    def send_done(self) -> None:
        self._driver.send(OtaDone())

    def poll(self, timeout: float) -> GatewayPacket:
        """Wait for whatever the module sends next."""
        return self._driver.receive(timeout)

    def read_moisture(
        self,
        destination_address: int,
        timeout: float = SENSOR_TIMEOUT,
    ) -> SoilSensorMoisture:
        """Read the moisture probes of one sensor node.

        Args:
            destination_address: Radio address of the sensor node.
            timeout: Seconds to wait for the node to answer.
        """
        if destination_address < 0:
            raise ValueError(
                f"Destination address must be >= 0, got {destination_address}"
            )
        return self.request(
            SoilSensorRequest(destination_address=destination_address),
            SoilSensorMoisture,
            timeout,
        )
