"""
Activity Window — sliding time window over filesystem notifications.

Every notification is recorded with its timestamp. Timestamps that fall
more than ``window_seconds`` behind the newest one are forgotten, and the
remaining count decides whether the drive sounds like a single seek or a
sustained burst of reads.
"""

import logging
from typing import List

from diskchatter.types import ActivityClass

logger = logging.getLogger("diskchatter.window")

DEFAULT_WINDOW_SECONDS = 3.0
DEFAULT_BURST_THRESHOLD = 3


class ActivityWindow:
    """Count-based burst detector over a fixed trailing window.

    Not thread-safe; the coordinator serializes calls.
    """

    def __init__(
        self,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        burst_threshold: int = DEFAULT_BURST_THRESHOLD,
    ):
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if burst_threshold < 1:
            raise ValueError("burst_threshold must be >= 1")
        self.window_seconds = window_seconds
        self.burst_threshold = burst_threshold
        self._timestamps: List[float] = []

    def record(self, now: float) -> ActivityClass:
        """Record a notification at ``now`` and classify the window."""
        self._timestamps.append(now)
        # A timestamp newer than ``now`` has negative age and never expires here.
        self._timestamps = [t for t in self._timestamps if now - t <= self.window_seconds]

        count = len(self._timestamps)
        result = ActivityClass.SUSTAINED if count >= self.burst_threshold else ActivityClass.SHORT
        logger.debug(f"Window: {count} events in last {self.window_seconds}s -> {result.value}")
        return result

    @property
    def count(self) -> int:
        return len(self._timestamps)

    def timestamps(self) -> List[float]:
        """Retained timestamps, oldest first."""
        return list(self._timestamps)

    def clear(self):
        self._timestamps = []
