"""
Operation statistics.

Counters are increment-only for the lifetime of the manager and are updated
on the hot path of every store-bound operation.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class StatsSnapshot:
    """
    Point-in-time view of the counters.

    Attributes:
        total_ops: Operations attempted
        error_ops: Operations that failed at the store or transport
        uptime: Seconds since the recorder was created
    """
    total_ops: int
    error_ops: int
    uptime: float

    @property
    def error_rate(self) -> float:
        """Error percentage; 0.0 before the first operation."""
        if self.total_ops == 0:
            return 0.0
        return self.error_ops / self.total_ops * 100


class RedisStats:
    """Thread-safe operation counters with an immutable start time."""

    def __init__(self):
        self._total_ops = 0
        self._error_ops = 0
        self._start_time = time.monotonic()
        self._lock = threading.Lock()

    @property
    def start_time(self) -> float:
        return self._start_time

    def incr_total(self) -> None:
        with self._lock:
            self._total_ops += 1

    def incr_error(self) -> None:
        with self._lock:
            self._error_ops += 1

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            total, errors = self._total_ops, self._error_ops
        return StatsSnapshot(
            total_ops=total,
            error_ops=errors,
            uptime=time.monotonic() - self._start_time,
        )

    def log(self, logger: Optional[logging.Logger] = None) -> StatsSnapshot:
        """Write a one-line report and return the snapshot it was built from."""
        logger = logger or logging.getLogger(self.__class__.__name__)
        snap = self.snapshot()
        logger.info(
            f"Redis Stats - Total: {snap.total_ops}, Errors: {snap.error_ops}, "
            f"Uptime: {snap.uptime:.0f}s, Error Rate: {snap.error_rate:.2f}%"
        )
        return snap
