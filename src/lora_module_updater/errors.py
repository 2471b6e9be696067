"""Exception hierarchy for the gateway link and the OTA engine."""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for every error raised by this package."""


class ChannelError(GatewayError, ConnectionError):
    """The serial port could not be opened, read or written."""


class ReadTimeout(GatewayError, TimeoutError):
    """No complete frame arrived before the receive deadline."""


class FrameOverflow(GatewayError, ValueError):
    """A frame is oversized or carries an invalid escape sequence."""


class SerializationError(GatewayError, ValueError):
    """A payload could not be encoded or did not decode to a known message."""


class InvalidResponse(GatewayError):
    """The gateway answered with a message that does not fit the request."""

    def __init__(self, expected: str, received: object) -> None:
        self.expected = expected
        self.received = received
        super().__init__(
            f"Invalid response from gateway: expected {expected}, got {received!r}"
        )


class OtaError(GatewayError):
    """Base class for OTA session failures."""


class OtaHandshakeError(OtaError):
    """Query, abort or init failed before any block was transferred."""


class OtaTimeout(OtaError, TimeoutError):
    """The transfer loop exhausted its round or time budget."""


class OtaCancelled(OtaError):
    """The session was cancelled before the module confirmed completion."""
