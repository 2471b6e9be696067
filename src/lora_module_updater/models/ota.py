"""OTA session model: block partition and acknowledgment bookkeeping.

Blocks are addressed by a zero-based index. Block ``i`` covers image bytes
``[i * block_size, min((i + 1) * block_size, image_len))``, so only the
last block may be shorter.

The session tracks three things the module feeds back:

- ``highest_sent_index``: the frontier, the smallest index never sent
  (it only moves forward while the window has room)
- ``last_acked_index``: the highest block the module reports stored,
  ``-1`` before the first report
- ``retransmit``: blocks the module NACKed and that have not been resent
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Any

from ..protocol.framing import MAX_PAYLOAD_SIZE
from ..protocol.parser import OtaStatus

WINDOW = 12
DEFAULT_BLOCK_SIZE = 64
# OtaData framing cost: tag(1) + index varint(up to 5) + length varint(1)
OTA_DATA_OVERHEAD = 7
MAX_BLOCK_SIZE = MAX_PAYLOAD_SIZE - OTA_DATA_OVERHEAD


def block_count_for(image_len: int, block_size: int) -> int:
    """Number of blocks needed for an image (ceiling division)."""
    if block_size < 1:
        raise ValueError(f"Block size must be positive, got {block_size}")
    return -(-image_len // block_size)


def slice_block(image: bytes, index: int, block_size: int) -> bytes:
    """Return block ``index`` of ``image``."""
    start = index * block_size
    if index < 0 or start >= len(image):
        raise IndexError(f"Block {index} is outside an image of {len(image)} bytes")
    end = min(start + block_size, len(image))
    return image[start:end]


@dataclass
class OtaSession:
    """One firmware transfer, owned and mutated only by the OTA engine."""

    image: bytes
    block_size: int = DEFAULT_BLOCK_SIZE
    window: int = WINDOW
    highest_sent_index: int = 0
    last_acked_index: int = -1
    retransmit: set[int] = field(default_factory=set)
    blocks_sent: int = 0
    retransmits: int = 0
    sha256: bytes = field(init=False)
    block_count: int = field(init=False)

    def __post_init__(self) -> None:
        self.image = bytes(self.image)
        if not self.image:
            raise ValueError("Firmware image is empty")
        if not 1 <= self.block_size <= MAX_BLOCK_SIZE:
            raise ValueError(
                f"Block size must be 1-{MAX_BLOCK_SIZE}, got {self.block_size}"
            )
        if self.window < 1:
            raise ValueError(f"Window must be at least 1, got {self.window}")
        self.sha256 = hashlib.sha256(self.image).digest()
        self.block_count = block_count_for(len(self.image), self.block_size)

    @property
    def image_len(self) -> int:
        return len(self.image)

    @property
    def outstanding(self) -> int:
        """Blocks past the last acknowledged one that the frontier covers."""
        return self.highest_sent_index - self.last_acked_index

    @property
    def all_sent(self) -> bool:
        return self.highest_sent_index >= self.block_count and not self.retransmit

    @property
    def progress(self) -> float:
        """Acknowledged fraction of the image, 0.0-1.0."""
        return min(1.0, (self.last_acked_index + 1) / self.block_count)

    def block(self, index: int) -> bytes:
        return slice_block(self.image, index, self.block_size)

    def next_index(self) -> int | None:
        """Pick the block to send this round.

        NACKed blocks go first, lowest index first. Otherwise the frontier
        block is chosen. Returns None once everything has been sent and
        nothing awaits retransmission, meaning a done request is due.
        """
        if self.retransmit:
            index = min(self.retransmit)
            self.retransmit.discard(index)
            self.retransmits += 1
            return index
        if self.highest_sent_index < self.block_count:
            return self.highest_sent_index
        return None

    def mark_sent(self, index: int) -> None:
        """Record that block ``index`` went out.

        The frontier only advances past the block just sent while the
        window still has room; when it is full the same block is picked
        again next round.
        """
        self.blocks_sent += 1
        if index != self.highest_sent_index:
            return
        if self.highest_sent_index + 1 - self.last_acked_index <= self.window:
            self.highest_sent_index += 1

    def apply_status(self, status: OtaStatus) -> set[int]:
        """Merge a status report from the module.

        Returns:
            The NACKed indices that were not already pending.
        """
        if status.last_acked_index > self.last_acked_index:
            self.last_acked_index = min(status.last_acked_index, self.block_count - 1)
        fresh = {
            index
            for index in status.nacked_indices
            if 0 <= index < self.block_count and index not in self.retransmit
        }
        self.retransmit |= fresh
        return fresh

    def to_status(self) -> dict[str, Any]:
        """Return a summary dict for external consumers."""
        return {
            "image_len": self.image_len,
            "sha256": self.sha256.hex(),
            "block_size": self.block_size,
            "block_count": self.block_count,
            "highest_sent_index": self.highest_sent_index,
            "last_acked_index": self.last_acked_index,
            "pending_retransmit": sorted(self.retransmit),
            "blocks_sent": self.blocks_sent,
            "retransmits": self.retransmits,
            "progress": round(self.progress, 3),
        }
