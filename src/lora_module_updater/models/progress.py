"""Progress samples emitted once per transfer round."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressSample:
    """Snapshot of a running transfer."""

    elapsed: float  # seconds since the transfer loop started
    blocks_sent: int
    last_acked_index: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ProgressSink(Protocol):
    """Anything that accepts progress samples."""

    def record(self, sample: ProgressSample) -> None: ...


class ProgressRecorder:
    """Keeps every sample in memory."""

    def __init__(self) -> None:
        self.samples: list[ProgressSample] = []

    def record(self, sample: ProgressSample) -> None:
        self.samples.append(sample)

    @property
    def latest(self) -> ProgressSample | None:
        return self.samples[-1] if self.samples else None

    def to_list(self) -> list[dict[str, Any]]:
        return [s.to_dict() for s in self.samples]


class LoggingProgressSink:
    """Logs every ``every``-th sample at INFO level."""

    def __init__(self, block_count: int, every: int = 50) -> None:
        self._block_count = block_count
        self._every = max(1, every)
        self._count = 0

    def record(self, sample: ProgressSample) -> None:
        self._count += 1
        if self._count % self._every:
            return
        logger.info(
            "%.1fs: %d blocks sent, %d/%d acknowledged",
            sample.elapsed,
            sample.blocks_sent,
            sample.last_acked_index + 1,
            self._block_count,
        )
