"""MCP server entry point for the LoRa module updater.

Exposes gateway and OTA operations as tools via the Model Context Protocol
using the official Python MCP SDK with stdio transport.

Tools run on the server's event loop. ``flash_firmware`` is the only
long-running one; it hands the transfer to a worker thread and holds the
port lock until the update ends. Other port tools answer "busy" instead of
waiting, and ``cancel_flash`` stops a running update between rounds.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from .config import UpdaterConfig
from .control import SessionControl
from .errors import GatewayError
from .models.progress import ProgressRecorder
from .transport.serial_connection import GatewayDriver
from .updater import OtaUpdater

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "lora-module-updater",
    instructions="MCP server for a LoRa gateway module: liveness, sensor reads and OTA firmware updates",
)

# Global connection state; one tool owns the port at a time
_connection: GatewayDriver | None = None
_config: UpdaterConfig | None = None
_lock = threading.Lock()
_active_updater: OtaUpdater | None = None
_last_result: dict[str, Any] | None = None

_BUSY = {"error": "Gateway is busy with a firmware update. Use 'cancel_flash' to stop it."}


def _get_config() -> UpdaterConfig:
    global _config
    if _config is None:
        _config = UpdaterConfig.from_env()
    return _config


def _get_connection() -> GatewayDriver:
    """Get the active gateway connection, raising if not connected."""
    if _connection is None or not _connection.connected:
        raise RuntimeError(
            "Not connected to gateway. Use the 'connect' tool first."
        )
    return _connection


def _get_control() -> SessionControl:
    return SessionControl(_get_connection(), _get_config().handshake_timeout)


@contextmanager
def _port() -> Iterator[bool]:
    """Hold the port lock; yields False without waiting if it is taken."""
    if not _lock.acquire(blocking=False):
        yield False
        return
    try:
        yield True
    finally:
        _lock.release()


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
def connect(port: str | None = None, baudrate: int | None = None) -> dict[str, Any]:
    """Open the serial port of the LoRa gateway and ping it.

    Args:
        port: Serial device path (defaults to LORA_UPDATER_PORT or /dev/ttyACM0).
        baudrate: Serial baudrate (default 115200).
    """
    global _connection, _config
    if _connection is not None and _connection.connected:
        return {
            "connected": True,
            "message": "Already connected",
            "port": _connection.info.path,
        }

    try:
        _config = _get_config().replace(port=port, baudrate=baudrate)
    except ValueError as e:
        return {"error": str(e)}

    with _port() as acquired:
        if not acquired:
            return _BUSY
        try:
            driver = GatewayDriver.open(_config.port, _config.baudrate, _config.read_timeout)
        except GatewayError as e:
            return {"error": str(e)}
        try:
            rtt = driver.ping()
        except GatewayError as e:
            driver.close()
            return {"error": f"Failed to connect to gateway: {e}"}
        _connection = driver

    return {
        "connected": True,
        "port": driver.info.path,
        "baudrate": driver.info.baudrate,
        "rtt_ms": round(rtt * 1000, 1),
    }


@mcp.tool()
def disconnect() -> dict[str, Any]:
    """Close the serial connection to the gateway."""
    global _connection
    if _connection is None:
        return {"disconnected": True}
    with _port() as acquired:
        if not acquired:
            return _BUSY
        _connection.close()
        _connection = None
    return {"disconnected": True}


@mcp.tool()
def ping() -> dict[str, Any]:
    """Check the gateway is alive and measure the round trip."""
    control = _get_control()
    with _port() as acquired:
        if not acquired:
            return _BUSY
        try:
            rtt = control.ping()
        except GatewayError as e:
            return {"error": str(e)}
    return {"alive": True, "rtt_ms": round(rtt * 1000, 1)}


# ─── OTA TOOLS ────────────────────────────────────────────────────────

@mcp.tool()
def get_ota_status() -> dict[str, Any]:
    """Ask the module whether an OTA session is in progress."""
    control = _get_control()
    with _port() as acquired:
        if not acquired:
            return _BUSY
        try:
            status = control.get_ota_status(_get_config().handshake_timeout)
        except GatewayError as e:
            return {"error": str(e)}
    return {
        "in_progress": status.in_progress,
        "last_acked_index": status.last_acked_index,
        "nacked_indices": list(status.nacked_indices),
    }


@mcp.tool()
def abort_ota() -> dict[str, Any]:
    """Abort the OTA session running on the module.

    The module may take tens of seconds to clean up. To stop an update
    started by this server, use cancel_flash instead.
    """
    control = _get_control()
    with _port() as acquired:
        if not acquired:
            return _BUSY
        try:
            control.abort()
        except GatewayError as e:
            return {"error": str(e)}
    return {"aborted": True}


@mcp.tool()
async def flash_firmware(
    path: str,
    dest_addr: int | None = None,
    block_size: int | None = None,
) -> dict[str, Any]:
    """Send a firmware image to the module over the air.

    Returns once the module confirms the complete image or the update
    fails. A stale session on the module is aborted first. Other port
    tools report busy until this returns.

    Args:
        path: Path to the firmware binary.
        dest_addr: Optional radio address of the node to update.
        block_size: Optional bytes per block (default 64).
    """
    global _active_updater, _last_result
    firmware = Path(path)
    if not firmware.is_file():
        return {"error": f"Firmware file not found: {path}"}

    try:
        config = _get_config().replace(dest_addr=dest_addr, block_size=block_size)
        image = firmware.read_bytes()
        control = _get_control()
        recorder = ProgressRecorder()
        updater = OtaUpdater(control, image, config, progress=recorder)
    except ValueError as e:
        return {"error": str(e)}

    with _port() as acquired:
        if not acquired:
            return _BUSY
        _active_updater = updater
        try:
            result = await asyncio.to_thread(updater.run)
        except GatewayError as e:
            _last_result = updater.result().to_dict()
            _last_result["error"] = str(e)
            return {"error": str(e), "session": updater.session.to_status()}
        finally:
            _active_updater = None

    _last_result = result.to_dict()
    latest = recorder.latest
    return {
        **_last_result,
        "path": str(firmware),
        "samples": len(recorder.samples),
        "last_sample": latest.to_dict() if latest else None,
    }


@mcp.tool()
def cancel_flash() -> dict[str, Any]:
    """Stop the running flash_firmware call.

    The update ends after its current round and the module is told to
    abort the session.
    """
    updater = _active_updater
    if updater is None:
        return {"error": "No firmware update is running"}
    updater.cancel()
    return {"cancelling": True, "session": updater.session.to_status()}


# ─── SENSOR TOOLS ─────────────────────────────────────────────────────

@mcp.tool()
def read_soil_sensor(destination_address: int) -> dict[str, Any]:
    """Read the moisture probes of one remote sensor node.

    Args:
        destination_address: Radio address of the sensor node.
    """
    control = _get_control()
    with _port() as acquired:
        if not acquired:
            return _BUSY
        try:
            reading = control.read_moisture(destination_address)
        except (GatewayError, ValueError) as e:
            return {"error": str(e)}
    return {"destination_address": destination_address, "zones": list(reading.zones)}


# ─── MCP RESOURCES ───────────────────────────────────────────────────

@mcp.resource("lora://ota/last-result")
def resource_last_result() -> str:
    """Outcome of the most recent flash_firmware call."""
    return json.dumps({"last_result": _last_result})


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=logging.INFO)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
