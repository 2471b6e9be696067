"""Command-line entry point.

Examples::

    lora-module-updater ping /dev/ttyACM0
    lora-module-updater flash /dev/ttyACM0 firmware.bin --dest-addr 7
    lora-module-updater moisture /dev/ttyACM0 3

Exit status is 0 on success and non-zero with a message on stderr when the
port cannot be opened, the gateway does not answer, or the update fails.
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
from pathlib import Path

from .config import UpdaterConfig
from .control import SessionControl
from .errors import GatewayError, OtaCancelled
from .models.ota import block_count_for
from .models.progress import LoggingProgressSink
from .transport.serial_connection import GatewayDriver
from .updater import OtaUpdater

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="lora-module-updater",
        description="Talk to a LoRa gateway module and update its firmware over the air.",
    )
    ap.add_argument("-b", "--baudrate", type=int, default=None,
                    help="serial baudrate (default 115200)")
    ap.add_argument("-v", "--verbose", action="count", default=0,
                    help="-v for INFO, -vv for DEBUG (frame dumps)")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("ping", help="check the gateway answers")
    p.add_argument("port", help="serial device path")

    p = sub.add_parser("status", help="show the module's OTA status")
    p.add_argument("port", help="serial device path")

    p = sub.add_parser("abort", help="abort an OTA session on the module")
    p.add_argument("port", help="serial device path")

    p = sub.add_parser("flash", help="send a firmware image")
    p.add_argument("port", help="serial device path")
    p.add_argument("binary", type=Path, help="path to the firmware binary")
    p.add_argument("--dest-addr", type=int, default=None,
                   help="radio address of the node to update")
    p.add_argument("--block-size", type=int, default=None,
                   help="bytes per OTA block")

    p = sub.add_parser("moisture", help="read a soil sensor node once")
    p.add_argument("port", help="serial device path")
    p.add_argument("destination_address", type=int, help="sensor node address")
    return ap


def _configure_logging(verbosity: int) -> None:
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        raw = os.environ.get("LORA_UPDATER_LOG_LEVEL", "WARNING")
        level = logging.getLevelName(raw.strip().upper())
        if not isinstance(level, int):
            raise ValueError(f"LORA_UPDATER_LOG_LEVEL={raw!r} is not a logging level")
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _ping(control: SessionControl, config: UpdaterConfig, args) -> int:
    rtt = control.ping()
    print(f"pong from {config.port} in {rtt * 1000:.1f} ms")
    return EXIT_OK


def _status(control: SessionControl, config: UpdaterConfig, args) -> int:
    status = control.get_ota_status(config.handshake_timeout)
    print(f"in_progress: {status.in_progress}")
    print(f"last_acked_index: {status.last_acked_index}")
    print(f"nacked_indices: {list(status.nacked_indices)}")
    return EXIT_OK


def _abort(control: SessionControl, config: UpdaterConfig, args) -> int:
    control.abort(config.handshake_timeout)
    print("OTA session aborted")
    return EXIT_OK


def _moisture(control: SessionControl, config: UpdaterConfig, args) -> int:
    reading = control.read_moisture(args.destination_address)
    print(",".join(str(z) for z in reading.zones))
    return EXIT_OK


def _flash(control: SessionControl, config: UpdaterConfig, args) -> int:
    image = args.binary.read_bytes()
    try:
        control.ping()
    except GatewayError as e:
        raise GatewayError(f"Failed to connect to gateway: {e}") from e

    progress = LoggingProgressSink(block_count_for(len(image), config.block_size))
    updater = OtaUpdater(control, image, config, progress=progress)

    def interrupt(signum, frame):
        # first Ctrl-C leaves the transfer loop between rounds, a second one
        # breaks out of whatever read is running
        if updater.cancel_requested:
            raise KeyboardInterrupt
        print("Interrupted, aborting OTA session", file=sys.stderr)
        updater.cancel()

    previous = signal.signal(signal.SIGINT, interrupt)
    try:
        result = updater.run()
    except OtaCancelled:
        return EXIT_INTERRUPTED
    except KeyboardInterrupt:
        # a reply to the interrupted round may still be queued
        control.driver.discard_input()
        try:
            control.abort(config.handshake_timeout)
        except GatewayError as e:
            logger.warning("Module did not confirm abort: %s", e)
        return EXIT_INTERRUPTED
    finally:
        signal.signal(signal.SIGINT, previous)

    print(
        f"Firmware {result.sha256[:16]}... delivered: {result.block_count} blocks, "
        f"{result.rounds} rounds, {result.retransmits} retransmits, {result.elapsed:.1f}s"
    )
    return EXIT_OK


_HANDLERS = {
    "ping": _ping,
    "status": _status,
    "abort": _abort,
    "flash": _flash,
    "moisture": _moisture,
}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        _configure_logging(args.verbose)
        config = UpdaterConfig.from_env().replace(
            port=args.port,
            baudrate=args.baudrate,
            block_size=getattr(args, "block_size", None),
            dest_addr=getattr(args, "dest_addr", None),
        )
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_USAGE

    try:
        with GatewayDriver.open(config.port, config.baudrate, config.read_timeout) as driver:
            control = SessionControl(driver, config.handshake_timeout)
            return _HANDLERS[args.command](control, config, args)
    except (GatewayError, OSError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
