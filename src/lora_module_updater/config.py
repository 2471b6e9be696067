"""Session parameters, read from ``LORA_UPDATER_*`` environment variables.

Command-line flags override the environment through
:meth:`UpdaterConfig.replace`.
"""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .control import HANDSHAKE_TIMEOUT
from .models.ota import DEFAULT_BLOCK_SIZE, MAX_BLOCK_SIZE, WINDOW
from .transport.serial_connection import DEFAULT_BAUDRATE, READ_TIMEOUT

ENV_PREFIX = "LORA_UPDATER_"

ROUND_TIMEOUT = 1.0
STATUS_DELAY = 0.15
MAX_ROUNDS = 100_000
TRANSFER_TIMEOUT = 3600.0


@dataclass
class UpdaterConfig:
    """Everything the updater needs besides the firmware image."""

    port: str = "/dev/ttyACM0"
    baudrate: int = DEFAULT_BAUDRATE
    read_timeout: float = READ_TIMEOUT
    block_size: int = DEFAULT_BLOCK_SIZE
    window: int = WINDOW
    round_timeout: float = ROUND_TIMEOUT
    handshake_timeout: float = HANDSHAKE_TIMEOUT
    status_delay: float = STATUS_DELAY
    max_rounds: int | None = MAX_ROUNDS
    transfer_timeout: float | None = TRANSFER_TIMEOUT
    dest_addr: int | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> UpdaterConfig:
        """Build a config from environment variables.

        ``LORA_UPDATER_BLOCK_SIZE=96`` sets ``block_size``, and so on. An
        empty value or ``none`` clears an optional field.

        Raises:
            ValueError: If a variable does not parse or the result is invalid.
        """
        environ = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for f in dataclasses.fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            values[f.name] = _coerce(f.name, f.type, raw)
        config = cls(**values)
        config.validate()
        return config

    def replace(self, **overrides: Any) -> UpdaterConfig:
        """Return a copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        config = dataclasses.replace(self, **changes)
        config.validate()
        return config

    def validate(self) -> None:
        if not 1 <= self.block_size <= MAX_BLOCK_SIZE:
            raise ValueError(
                f"block_size must be 1-{MAX_BLOCK_SIZE}, got {self.block_size}"
            )
        if self.window < 1:
            raise ValueError(f"window must be at least 1, got {self.window}")
        if self.baudrate <= 0:
            raise ValueError(f"baudrate must be positive, got {self.baudrate}")
        for name in ("read_timeout", "round_timeout", "handshake_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.status_delay < 0:
            raise ValueError("status_delay must not be negative")
        if self.max_rounds is not None and self.max_rounds < 1:
            raise ValueError(f"max_rounds must be at least 1, got {self.max_rounds}")
        if self.transfer_timeout is not None and self.transfer_timeout <= 0:
            raise ValueError("transfer_timeout must be positive")
        if self.dest_addr is not None and self.dest_addr < 0:
            raise ValueError(f"dest_addr must be >= 0, got {self.dest_addr}")


def _coerce(name: str, annotation: str, raw: str) -> Any:
    """Convert one environment string according to the field annotation."""
    raw = raw.strip()
    if "None" in annotation and raw.lower() in ("", "none"):
        return None
    try:
        if annotation.startswith("int"):
            return int(raw, 0)
        if annotation.startswith("float"):
            return float(raw)
    except ValueError as e:
        raise ValueError(f"{ENV_PREFIX}{name.upper()}={raw!r} is not a valid {annotation}") from e
    return raw
