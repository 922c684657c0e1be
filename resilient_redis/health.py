"""
Background health monitoring and statistics reporting.

Both loops run as asyncio tasks and observe one shared ``asyncio.Event``;
setting it stops them at their next wake-up.
"""

import asyncio
import logging
import threading
from typing import Optional

from .session import StoreSession
from .stats import RedisStats


class HealthState:
    """The shared health flag read by every store-bound operation."""

    def __init__(self, healthy: bool = False):
        self._healthy = healthy
        self._lock = threading.Lock()

    def is_healthy(self) -> bool:
        with self._lock:
            return self._healthy

    def set(self, healthy: bool) -> bool:
        """Store the new value and return the previous one."""
        with self._lock:
            previous, self._healthy = self._healthy, healthy
            return previous


async def _wait_or_stop(stop_event: asyncio.Event, interval: float) -> bool:
    """Sleep for ``interval`` seconds; True if the stop event fired meanwhile."""
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=interval)
        return True
    except asyncio.TimeoutError:
        return False


class HealthMonitor:
    """
    Periodically probes the session and flips the health flag.

    Each state transition is logged exactly once; a Healthy -> Unhealthy
    transition also counts one error in the statistics.
    """

    def __init__(
        self,
        session: StoreSession,
        state: HealthState,
        interval: float,
        stop_event: asyncio.Event,
        stats: Optional[RedisStats] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.session = session
        self.state = state
        self.interval = interval
        self.stop_event = stop_event
        self.stats = stats
        self.logger = logger or logging.getLogger(self.__class__.__name__)

    async def check_once(self) -> bool:
        """Run one probe round, update the flag and return the new health."""
        error = None
        try:
            await self.session.probe()
            healthy = True
        except Exception as e:
            # any probe failure, expected or not, counts as unreachable
            healthy = False
            error = e

        was_healthy = self.state.set(healthy)
        if was_healthy and not healthy:
            self.logger.error(f"Redis health check failed: {type(error).__name__}: {error}")
            if self.stats is not None:
                self.stats.incr_error()
        elif healthy and not was_healthy:
            self.logger.info("Redis health check recovered")
        return healthy

    async def run(self) -> None:
        self.logger.debug(f"Health monitor started (interval={self.interval}s)")
        while not await _wait_or_stop(self.stop_event, self.interval):
            await self.check_once()
        self.logger.debug("Health monitor stopped")

    def start(self) -> asyncio.Task:
        return asyncio.create_task(self.run(), name="redis-health-monitor")


class StatsReporter:
    """Logs a statistics snapshot every ``interval`` seconds."""

    def __init__(
        self,
        stats: RedisStats,
        interval: float,
        stop_event: asyncio.Event,
        logger: Optional[logging.Logger] = None,
    ):
        self.stats = stats
        self.interval = interval
        self.stop_event = stop_event
        self.logger = logger or logging.getLogger(self.__class__.__name__)

    async def run(self) -> None:
        while not await _wait_or_stop(self.stop_event, self.interval):
            self.stats.log(self.logger)

    def start(self) -> asyncio.Task:
        return asyncio.create_task(self.run(), name="redis-stats-reporter")
