"""Shared fixtures: an in-memory serial port and a simulated gateway module."""

from __future__ import annotations

import hashlib
import time

import pytest

from lora_module_updater.config import UpdaterConfig
from lora_module_updater.control import SessionControl
from lora_module_updater.protocol.commands import (
    GetOtaStatus,
    OtaAbort,
    OtaData,
    OtaDone,
    OtaInit,
    PingRequest,
    SoilSensorRequest,
    parse_request,
)
from lora_module_updater.protocol.framing import TERMINATOR, decode_frame, encode_frame
from lora_module_updater.protocol.parser import (
    OtaAbortAck,
    OtaDoneAck,
    OtaInitAck,
    OtaStatus,
    PingResponse,
    SoilSensorMoisture,
    serialize_response,
)
from lora_module_updater.transport.serial_connection import GatewayDriver


class FakeSerialPort:
    """Stands in for ``serial.Serial``.

    Bytes written by the host are split into frames and handed to
    ``responder``; whatever it returns is queued for the host to read.
    An empty read sleeps for ``timeout`` like a real port would.
    """

    def __init__(self, responder=None) -> None:
        self.port = "/dev/fake"
        self.baudrate = 115200
        self.timeout = 0.1
        self.is_open = True
        self.responder = responder
        self.written = bytearray()
        self.sent_payloads: list[bytes] = []
        self._partial = bytearray()
        self._rx = bytearray()

    def write(self, data: bytes) -> int:
        self.written += data
        for byte in data:
            if byte == TERMINATOR:
                payload = decode_frame(bytes(self._partial))
                self._partial.clear()
                self.sent_payloads.append(payload)
                if self.responder is not None:
                    for frame in self.responder(payload):
                        self._rx += frame
            else:
                self._partial.append(byte)
        return len(data)

    def flush(self) -> None:
        pass

    def feed(self, data: bytes) -> None:
        self._rx += data

    def read(self, size: int = 1) -> bytes:
        if not self._rx:
            time.sleep(self.timeout or 0)
            return b""
        chunk = bytes(self._rx[:size])
        del self._rx[:size]
        return chunk

    def reset_input_buffer(self) -> None:
        self._rx.clear()

    def close(self) -> None:
        self.is_open = False


class FakeModule:
    """Simulated gateway module speaking the OTA protocol.

    Loss is injected deterministically:

    - ``lose_blocks``: the first copy of each listed block index vanishes
      on the way to the module (no response at all)
    - ``corrupt_blocks``: the first copy arrives damaged; the module keeps
      nothing and NACKs it in its status
    - ``lose_responses``: 0-based numbers of responses that get lost on
      the way back
    """

    def __init__(
        self,
        in_progress: bool = False,
        lose_blocks=(),
        corrupt_blocks=(),
        lose_responses=(),
        silent: bool = False,
    ) -> None:
        self.in_progress = in_progress
        self.silent = silent
        self.lose_blocks = set(lose_blocks)
        self.corrupt_blocks = set(corrupt_blocks)
        self.lose_responses = set(lose_responses)
        self.init: OtaInit | None = None
        self.received: dict[int, bytes] = {}
        self.nacked: set[int] = set()
        self.requests: list = []
        self.data_indices: list[int] = []
        self.reported_acked: set[int] = set()
        self.completed = False
        self._responses = 0

    def __call__(self, payload: bytes) -> list[bytes]:
        packet = parse_request(payload)
        self.requests.append(packet)
        if self.silent:
            return []
        response = self.handle(packet)
        if response is None:
            return []
        number = self._responses
        self._responses += 1
        if number in self.lose_responses:
            return []
        return [encode_frame(serialize_response(response))]

    @property
    def image(self) -> bytes:
        return b"".join(self.received[i] for i in sorted(self.received))

    def status(self) -> OtaStatus:
        last = max(self.received) if self.received else -1
        missing = {i for i in range(last) if i not in self.received}
        nacks = tuple(sorted(missing | self.nacked))
        self.reported_acked |= {i for i in self.received if i <= last}
        return OtaStatus(in_progress=self.in_progress, last_acked_index=last, nacked_indices=nacks)

    def handle(self, packet):
        if isinstance(packet, PingRequest):
            return PingResponse()
        if isinstance(packet, SoilSensorRequest):
            return SoilSensorMoisture(zones=(410, 388, 502, 0))
        if isinstance(packet, GetOtaStatus):
            return self.status()
        if isinstance(packet, OtaAbort):
            self.in_progress = False
            self.init = None
            self.received.clear()
            self.nacked.clear()
            return OtaAbortAck()
        if isinstance(packet, OtaInit):
            self.init = packet
            self.in_progress = True
            self.received.clear()
            self.nacked.clear()
            return OtaInitAck()
        if isinstance(packet, OtaData):
            self.data_indices.append(packet.index)
            if packet.index in self.lose_blocks:
                self.lose_blocks.discard(packet.index)
                return None
            if packet.index in self.corrupt_blocks:
                self.corrupt_blocks.discard(packet.index)
                self.nacked.add(packet.index)
                return self.status()
            self.nacked.discard(packet.index)
            self.received[packet.index] = packet.data
            return self.status()
        if isinstance(packet, OtaDone):
            if self.init is None:
                return self.status()
            missing = {i for i in range(self.init.block_count) if i not in self.received}
            if missing:
                # the module knows block_count, so trailing gaps are NACKed too
                self.nacked |= missing
                return self.status()
            if hashlib.sha256(self.image).digest() != self.init.sha256:
                return self.status()
            self.completed = True
            self.in_progress = False
            return OtaDoneAck()
        raise AssertionError(f"unhandled packet {packet!r}")


@pytest.fixture
def module():
    return FakeModule()


@pytest.fixture
def make_link():
    """Build (driver, control, port) around a responder."""

    def _make(responder=None):
        port = FakeSerialPort(responder)
        driver = GatewayDriver(port, timeout=0.01)
        return driver, SessionControl(driver, handshake_timeout=0.2), port

    return _make


@pytest.fixture
def fast_config():
    """Config with timeouts small enough for an in-memory link."""
    return UpdaterConfig(
        port="/dev/fake",
        read_timeout=0.01,
        round_timeout=0.05,
        handshake_timeout=0.2,
        status_delay=0,
        max_rounds=5000,
        transfer_timeout=None,
    )
