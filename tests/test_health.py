"""
Tests for the health monitor, health state and stats reporter.

Covers:
- HealthState read/write semantics
- Transition logging (exactly once per transition)
- Error accounting on the Healthy -> Unhealthy transition
- Background loops stopping on the shared event
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from redis.exceptions import ConnectionError

from resilient_redis import (
    HealthMonitor,
    HealthState,
    RedisStats,
    StatsReporter,
    StoreSession,
)


@pytest.fixture
def session(standalone_config, mock_redis_client) -> StoreSession:
    session = StoreSession(standalone_config)
    session._client = mock_redis_client
    return session


@pytest.fixture
def monitor(session, mock_logger) -> HealthMonitor:
    return HealthMonitor(
        session,
        HealthState(healthy=True),
        interval=0.01,
        stop_event=asyncio.Event(),
        stats=RedisStats(),
        logger=mock_logger,
    )


class TestHealthState:
    """Test the shared health flag."""

    def test_default_unhealthy(self):
        assert HealthState().is_healthy() is False

    def test_set_returns_previous(self):
        state = HealthState(healthy=True)
        assert state.set(False) is True
        assert state.set(False) is False
        assert state.is_healthy() is False


class TestHealthMonitorTransitions:
    """Test probe rounds and transition handling."""

    @pytest.mark.asyncio
    async def test_healthy_round(self, monitor, mock_logger):
        """A steady healthy state logs nothing."""
        assert await monitor.check_once() is True
        assert monitor.state.is_healthy() is True
        mock_logger.error.assert_not_called()
        mock_logger.info.assert_not_called()

    @pytest.mark.asyncio
    async def test_failure_flips_flag(self, monitor, mock_redis_client):
        mock_redis_client.ping = AsyncMock(side_effect=ConnectionError("down"))

        assert await monitor.check_once() is False
        assert monitor.state.is_healthy() is False

    @pytest.mark.asyncio
    async def test_unexpected_error_flips_flag(self, monitor, mock_redis_client, mock_logger):
        mock_redis_client.ping = AsyncMock(side_effect=RuntimeError("boom"))

        assert await monitor.check_once() is False
        assert monitor.state.is_healthy() is False
        mock_logger.error.assert_called_once()

    @pytest.mark.asyncio
    async def test_failure_logged_once(self, monitor, mock_redis_client, mock_logger):
        """Repeated failed rounds log the transition only once."""
        mock_redis_client.ping = AsyncMock(side_effect=ConnectionError("down"))

        for _ in range(3):
            await monitor.check_once()

        assert mock_logger.error.call_count == 1

    @pytest.mark.asyncio
    async def test_failure_counts_one_error(self, monitor, mock_redis_client):
        mock_redis_client.ping = AsyncMock(side_effect=ConnectionError("down"))

        await monitor.check_once()
        await monitor.check_once()

        assert monitor.stats.snapshot().error_ops == 1

    @pytest.mark.asyncio
    async def test_recovery_logged_once(self, monitor, mock_redis_client, mock_logger):
        mock_redis_client.ping = AsyncMock(side_effect=ConnectionError("down"))
        await monitor.check_once()

        mock_redis_client.ping = AsyncMock(return_value=True)
        await monitor.check_once()
        await monitor.check_once()

        assert monitor.state.is_healthy() is True
        recovered = [
            c for c in mock_logger.info.call_args_list if "recovered" in c[0][0]
        ]
        assert len(recovered) == 1

    @pytest.mark.asyncio
    async def test_disconnected_session_is_unhealthy(self, standalone_config, mock_logger):
        """A session without a client probes as unhealthy."""
        monitor = HealthMonitor(
            StoreSession(standalone_config),
            HealthState(healthy=True),
            interval=0.01,
            stop_event=asyncio.Event(),
            logger=mock_logger,
        )
        assert await monitor.check_once() is False


class TestBackgroundLoops:
    """Test loop scheduling and shutdown."""

    @pytest.mark.asyncio
    async def test_monitor_runs_until_stopped(self, monitor, mock_redis_client):
        task = monitor.start()
        await asyncio.sleep(0.05)
        monitor.stop_event.set()
        await asyncio.wait_for(task, timeout=1.0)

        assert task.done()
        assert mock_redis_client.ping.await_count >= 1

    @pytest.mark.asyncio
    async def test_monitor_detects_failure_within_a_tick(self, monitor, mock_redis_client):
        """Once a probe fails the flag is down after at most one interval."""
        task = monitor.start()
        mock_redis_client.ping = AsyncMock(side_effect=ConnectionError("down"))
        await asyncio.sleep(0.05)

        assert monitor.state.is_healthy() is False

        monitor.stop_event.set()
        await asyncio.wait_for(task, timeout=1.0)

    @pytest.mark.asyncio
    async def test_unexpected_probe_error_keeps_monitor_alive(self, monitor, mock_redis_client):
        """An unexpected exception marks the store unhealthy without ending the loop."""
        mock_redis_client.ping = AsyncMock(side_effect=RuntimeError("boom"))
        task = monitor.start()
        await asyncio.sleep(0.05)

        assert not task.done()
        assert monitor.state.is_healthy() is False

        mock_redis_client.ping = AsyncMock(return_value=True)
        await asyncio.sleep(0.05)

        assert not task.done()
        assert monitor.state.is_healthy() is True

        monitor.stop_event.set()
        await asyncio.wait_for(task, timeout=1.0)

    @pytest.mark.asyncio
    async def test_preset_stop_event_exits_immediately(self, monitor, mock_redis_client):
        monitor.stop_event.set()
        await asyncio.wait_for(monitor.run(), timeout=1.0)
        mock_redis_client.ping.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stats_reporter_logs(self, mock_logger):
        stats = RedisStats()
        stats.incr_total()
        stop = asyncio.Event()
        reporter = StatsReporter(stats, interval=0.01, stop_event=stop, logger=mock_logger)

        task = reporter.start()
        await asyncio.sleep(0.05)
        stop.set()
        await asyncio.wait_for(task, timeout=1.0)

        assert mock_logger.info.called
        assert "Redis Stats" in mock_logger.info.call_args[0][0]

    @pytest.mark.asyncio
    async def test_one_event_stops_both_loops(self, monitor, mock_logger):
        reporter = StatsReporter(
            RedisStats(), interval=0.01, stop_event=monitor.stop_event, logger=mock_logger
        )
        tasks = [monitor.start(), reporter.start()]

        monitor.stop_event.set()
        await asyncio.wait_for(asyncio.gather(*tasks), timeout=1.0)

        assert all(t.done() for t in tasks)
