"""Absolute position source interfaces."""

from __future__ import annotations

import logging
from collections import deque

from .pose import AbsoluteMeasurement

logger = logging.getLogger(__name__)


class AbsolutePositionSource:
    """Base interface for low-rate absolute position sources.

    Implementations may wrap a camera solvePnP, an external tracker bridge,
    or a recorded session.
    """

    def poll(self) -> list[AbsoluteMeasurement]:
        """Return measurements that arrived since the last poll, oldest first."""
        raise NotImplementedError

    def close(self) -> None:
        pass


class QueuedAbsolutePositionSource(AbsolutePositionSource):
    """Bounded FIFO filled by an arrival callback and drained by ``poll``."""

    def __init__(self, capacity: int = 64):
        if capacity <= 0:
            raise ValueError(f"capacity must be > 0, got {capacity}")
        self._queue: deque[AbsoluteMeasurement] = deque(maxlen=int(capacity))
        self.dropped = 0

    def push(self, measurement: AbsoluteMeasurement) -> None:
        if len(self._queue) == self._queue.maxlen:
            self.dropped += 1
            logger.warning(
                "[SOURCE] absolute measurement queue full; dropped oldest (total=%d)",
                self.dropped,
            )
        self._queue.append(measurement)

    def poll(self) -> list[AbsoluteMeasurement]:
        out = list(self._queue)
        self._queue.clear()
        return out

    def __len__(self) -> int:
        return len(self._queue)
