"""
Resilient async Redis access layer.

Topology-aware sessions (standalone, replicated with optional Sentinel,
cluster), background health monitoring, a Lua script registry and atomic
primitives (bounded counters, token locks) behind one uniform result type.
"""

from .config import (
    ClusterConfig,
    CommonConfig,
    RedisConfig,
    RedisMode,
    ReplicatedConfig,
    SentinelConfig,
    StandaloneConfig,
)
from .errors import (
    CacheResult,
    ClusterNotReadyError,
    ConnectionFailedError,
    ErrorCode,
    HealthCheckFailedError,
    InvalidConfigError,
    InvalidOperationError,
    KeyNotFoundError,
    OperationFailedError,
    OperationTimeoutError,
    RedisManagerError,
    UnexpectedReplyError,
)
from .health import HealthMonitor, HealthState, StatsReporter
from .manager import RedisManager
from .operations import ScanResult
from .pipeline import RedisPipeline
from .primitives import LIMIT_REACHED
from .retry import retry_result
from .scripts import RegisteredScript, ScriptRegistry
from .session import FailoverTopology, ReplicaSetClient, StoreSession
from .stats import RedisStats, StatsSnapshot

__version__ = "0.1.0"

__all__ = [
    "CacheResult",
    "ClusterConfig",
    "ClusterNotReadyError",
    "CommonConfig",
    "ConnectionFailedError",
    "ErrorCode",
    "FailoverTopology",
    "HealthCheckFailedError",
    "HealthMonitor",
    "HealthState",
    "InvalidConfigError",
    "InvalidOperationError",
    "KeyNotFoundError",
    "LIMIT_REACHED",
    "OperationFailedError",
    "OperationTimeoutError",
    "RedisConfig",
    "RedisManager",
    "RedisManagerError",
    "RedisMode",
    "RedisPipeline",
    "RedisStats",
    "RegisteredScript",
    "ReplicaSetClient",
    "ReplicatedConfig",
    "ScanResult",
    "ScriptRegistry",
    "SentinelConfig",
    "StandaloneConfig",
    "StatsReporter",
    "StatsSnapshot",
    "StoreSession",
    "UnexpectedReplyError",
    "retry_result",
]
