"""Physical link to the gateway."""

from .serial_connection import GatewayDriver, PortInfo
