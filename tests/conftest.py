"""
Pytest configuration and fixtures for resilient_redis tests.

Provides:
- Configuration fixtures for every topology
- Mock Redis clients and Sentinel objects
- A manager backed by an in-process fake store (fakeredis with Lua)
- Integration test markers and CLI options
"""

import pytest
from unittest.mock import AsyncMock, MagicMock
from typing import AsyncGenerator

import fakeredis
from fakeredis import aioredis as fake_aioredis

from resilient_redis import (
    ClusterConfig,
    CommonConfig,
    FailoverTopology,
    RedisConfig,
    RedisManager,
    RedisMode,
    ReplicatedConfig,
    ReplicaSetClient,
    SentinelConfig,
    StandaloneConfig,
)


# ============================================================================
# Pytest Hooks for Integration Tests
# ============================================================================

def pytest_addoption(parser):
    """Add custom command line options for pytest."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests (requires running Redis instance)",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (requires running Redis)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration is provided."""
    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(reason="need --run-integration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def standalone_config() -> RedisConfig:
    """Standalone configuration with background tasks disabled."""
    return RedisConfig(
        mode=RedisMode.STANDALONE,
        single=StandaloneConfig(addr="localhost:6379"),
        common=CommonConfig(health_check=False),
    )


@pytest.fixture
def sentinel_config() -> RedisConfig:
    """Replicated configuration with Sentinel failover."""
    return RedisConfig(
        mode=RedisMode.REPLICATED,
        master_slave=ReplicatedConfig(
            password="sentinel_password",
            sentinel=SentinelConfig(
                enabled=True,
                master_name="mymaster",
                sentinel_addrs=[
                    "sentinel1.example.com:26379",
                    "sentinel2.example.com:26379",
                    "sentinel3.example.com:26379",
                ],
            ),
        ),
        common=CommonConfig(health_check=False),
    )


@pytest.fixture
def replica_set_config() -> RedisConfig:
    """Replicated configuration with static addresses and no Sentinel."""
    return RedisConfig(
        mode=RedisMode.REPLICATED,
        master_slave=ReplicatedConfig(
            addrs=["redis-1:6379", "redis-2:6379", "redis-3:6379"],
        ),
        common=CommonConfig(health_check=False),
    )


@pytest.fixture
def cluster_config() -> RedisConfig:
    """Cluster configuration."""
    return RedisConfig(
        mode=RedisMode.CLUSTER,
        cluster=ClusterConfig(
            addrs=["node-1:7000", "node-2:7001", "node-3:7002"],
            max_redirects=5,
        ),
        common=CommonConfig(health_check=False),
    )


# ============================================================================
# Mock Fixtures
# ============================================================================

@pytest.fixture
def mock_redis_client() -> AsyncMock:
    """Create a mock async Redis client."""
    mock = AsyncMock()
    mock.ping = AsyncMock(return_value=True)
    mock.get = AsyncMock(return_value=b"value")
    mock.evalsha = AsyncMock(return_value=1)
    mock.eval = AsyncMock(return_value=1)
    mock.aclose = AsyncMock()
    return mock


@pytest.fixture
def mock_sentinel() -> MagicMock:
    """Create a mock Redis Sentinel."""
    mock = MagicMock()
    mock.master_for = MagicMock(return_value=AsyncMock())
    mock.discover_master = AsyncMock(return_value=("redis-master", 6379))
    mock.discover_slaves = AsyncMock(return_value=[("redis-replica-1", 6379)])
    mock.sentinels = []
    return mock


@pytest.fixture
def mock_failover_topology() -> FailoverTopology:
    return FailoverTopology(
        master_name="mymaster",
        master_address=("redis-master", 6379),
        replica_addresses=[("redis-replica-1", 6379), ("redis-replica-2", 6379)],
        sentinel_count=3,
        is_healthy=True,
        quorum=2,
    )


@pytest.fixture
def mock_logger() -> MagicMock:
    """Create a mock logger for testing log output."""
    logger = MagicMock()
    logger.info = MagicMock()
    logger.warning = MagicMock()
    logger.error = MagicMock()
    logger.debug = MagicMock()
    return logger


# ============================================================================
# Manager Fixtures
# ============================================================================

def attach_client(manager: RedisManager, client) -> RedisManager:
    """Bind ``client`` as the live session client and mark the manager healthy."""
    manager._session._client = client
    manager._health.set(True)
    manager._initialized = True
    return manager


@pytest.fixture
def fake_store():
    """A fresh in-process store per test."""
    return fake_aioredis.FakeRedis(server=fakeredis.FakeServer())


@pytest.fixture
async def fake_manager(
    standalone_config,
    fake_store,
) -> AsyncGenerator[RedisManager, None]:
    """
    Manager whose session talks to an in-process fake store.

    Scripts run through fakeredis' Lua engine.
    """
    manager = attach_client(RedisManager(standalone_config), fake_store)

    yield manager

    await manager.close()


@pytest.fixture
async def mocked_manager(
    standalone_config,
    mock_redis_client,
    mock_logger,
) -> AsyncGenerator[RedisManager, None]:
    """Manager whose session client is an AsyncMock."""
    manager = attach_client(
        RedisManager(standalone_config, logger=mock_logger), mock_redis_client
    )

    yield manager

    await manager.close()


@pytest.fixture
async def replica_set_manager(
    replica_set_config,
    mock_logger,
) -> AsyncGenerator[RedisManager, None]:
    """Manager bound to a static replica set of AsyncMock nodes."""
    primary = AsyncMock()
    primary.get = AsyncMock(return_value=b"from-primary")
    replicas = []
    for name in ("replica-1", "replica-2"):
        node = AsyncMock()
        node.get = AsyncMock(return_value=name.encode())
        replicas.append(node)

    manager = attach_client(
        RedisManager(replica_set_config, logger=mock_logger),
        ReplicaSetClient(primary, replicas),
    )

    yield manager

    await manager.close()
