# src/perpindexer/application/services/continuity_service.py
"""
Stream-continuity monitor.

Tracks the highest block observed on a stream. A block far enough below the
cursor means the upstream chain restarted (local devnet reset, reindexed
node): cached derived state no longer describes the stream and listeners are
told to drop it.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from perpindexer.infrastructure.monitoring.metrics import STREAM_RESETS

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreamDiscontinuity:
    previous: int
    observed: int


ResetListener = Callable[[StreamDiscontinuity], None]


class StreamContinuityMonitor:
    def __init__(self, tolerance: int = 50, cursor: int = 0, stream: str = "default"):
        if tolerance < 0:
            raise ValueError("tolerance must be non-negative")
        self.tolerance = tolerance
        self.cursor = cursor
        self.stream = stream
        self._listeners: List[ResetListener] = []

    def add_listener(self, listener: ResetListener) -> None:
        self._listeners.append(listener)

    def observe(self, block_number: int) -> Optional[StreamDiscontinuity]:
        """
        Feed one observed block number.

        Advances on a higher block, ignores late arrivals within `tolerance`
        of the cursor, and reports a discontinuity (moving the cursor down to
        the observed block) when the block is further back than that.
        """
        if self.cursor == 0 or block_number > self.cursor:
            self.cursor = block_number
            return None
        if block_number >= self.cursor - self.tolerance:
            return None

        discontinuity = StreamDiscontinuity(previous=self.cursor, observed=block_number)
        log.warning(f"Stream '{self.stream}' went back from block {self.cursor} to {block_number}; "
                    f"resetting derived state.")
        STREAM_RESETS.labels(stream=self.stream).inc()
        self.cursor = block_number
        for listener in self._listeners:
            try:
                listener(discontinuity)
            except Exception:
                log.exception(f"Reset listener {listener!r} failed.")
        return discontinuity
