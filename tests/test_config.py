"""Tests for environment-driven configuration."""

import pytest

from lora_module_updater.config import (
    MAX_ROUNDS,
    ROUND_TIMEOUT,
    STATUS_DELAY,
    TRANSFER_TIMEOUT,
    UpdaterConfig,
)
from lora_module_updater.control import HANDSHAKE_TIMEOUT
from lora_module_updater.models.ota import DEFAULT_BLOCK_SIZE, MAX_BLOCK_SIZE, WINDOW


def test_defaults():
    config = UpdaterConfig.from_env({})
    assert config == UpdaterConfig()
    assert config.baudrate == 115200
    assert config.block_size == DEFAULT_BLOCK_SIZE
    assert config.window == WINDOW
    assert config.round_timeout == ROUND_TIMEOUT
    assert config.handshake_timeout == HANDSHAKE_TIMEOUT
    assert config.status_delay == STATUS_DELAY
    assert config.max_rounds == MAX_ROUNDS
    assert config.transfer_timeout == TRANSFER_TIMEOUT
    assert config.dest_addr is None


def test_from_env_parses_types():
    config = UpdaterConfig.from_env(
        {
            "LORA_UPDATER_PORT": "/dev/ttyUSB1",
            "LORA_UPDATER_BAUDRATE": "57600",
            "LORA_UPDATER_BLOCK_SIZE": "0x40",
            "LORA_UPDATER_ROUND_TIMEOUT": "0.5",
            "LORA_UPDATER_DEST_ADDR": "7",
            "UNRELATED": "ignored",
        }
    )
    assert config.port == "/dev/ttyUSB1"
    assert config.baudrate == 57600
    assert config.block_size == 64
    assert config.round_timeout == 0.5
    assert config.dest_addr == 7


@pytest.mark.parametrize("raw", ["", "none", "None"])
def test_from_env_clears_optional_fields(raw):
    config = UpdaterConfig.from_env(
        {"LORA_UPDATER_MAX_ROUNDS": raw, "LORA_UPDATER_TRANSFER_TIMEOUT": raw}
    )
    assert config.max_rounds is None
    assert config.transfer_timeout is None


def test_from_env_rejects_garbage():
    with pytest.raises(ValueError, match="LORA_UPDATER_BAUDRATE"):
        UpdaterConfig.from_env({"LORA_UPDATER_BAUDRATE": "fast"})


def test_from_env_rejects_none_for_required_field():
    with pytest.raises(ValueError):
        UpdaterConfig.from_env({"LORA_UPDATER_WINDOW": "none"})


def test_from_env_validates():
    with pytest.raises(ValueError, match="block_size"):
        UpdaterConfig.from_env({"LORA_UPDATER_BLOCK_SIZE": str(MAX_BLOCK_SIZE + 1)})


def test_replace_skips_none():
    base = UpdaterConfig(port="/dev/ttyACM1", block_size=32)
    config = base.replace(port=None, block_size=None, dest_addr=3)
    assert config.port == "/dev/ttyACM1"
    assert config.block_size == 32
    assert config.dest_addr == 3
    assert base.dest_addr is None


@pytest.mark.parametrize(
    "overrides",
    [
        {"block_size": 0},
        {"window": 0},
        {"baudrate": -1},
        {"round_timeout": 0},
        {"status_delay": -0.1},
        {"max_rounds": 0},
        {"transfer_timeout": -5.0},
        {"dest_addr": -1},
    ],
)
def test_replace_validates(overrides):
    with pytest.raises(ValueError):
        UpdaterConfig().replace(**overrides)
