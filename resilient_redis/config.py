"""
Configuration for the Redis manager.

One ``RedisConfig`` selects a topology mode and carries the per-mode address
and credential set plus the settings shared by every mode (pool sizing,
timeouts, retry backoff bounds, health-check and statistics intervals).
"""

import urllib.parse
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, List, Mapping, Optional, Tuple

from .errors import InvalidConfigError

DEFAULT_PORT = 6379


class RedisMode(str, Enum):
    """Deployment topology the manager is bound to."""

    STANDALONE = "single"
    REPLICATED = "master_slave"
    CLUSTER = "cluster"


def parse_address(addr: str, default_port: int = DEFAULT_PORT) -> Tuple[str, int]:
    """
    Split a ``host:port`` string into a (host, port) tuple.

    Raises:
        InvalidConfigError: If the address is empty or the port is not a number
    """
    addr = (addr or "").strip()
    if not addr:
        raise InvalidConfigError("empty address")
    host, sep, port = addr.rpartition(":")
    if not sep:
        return addr, default_port
    try:
        return host, int(port)
    except ValueError:
        raise InvalidConfigError(f"invalid port in address: {addr}") from None


@dataclass
class StandaloneConfig:
    """
    Single-node configuration.

    Attributes:
        addr: Node address, e.g. "localhost:6379"
        password: Optional password
        db: Database number
        ssl: Whether to use TLS
    """
    addr: str = ""
    password: Optional[str] = None
    db: int = 0
    ssl: bool = False

    @property
    def url(self) -> str:
        """Generate Redis URL from configuration."""
        host, port = parse_address(self.addr)
        scheme = "rediss" if self.ssl else "redis"
        auth = ""
        if self.password:
            encoded_password = urllib.parse.quote(self.password)
            auth = f":{encoded_password}@"
        return f"{scheme}://{auth}{host}:{port}/{self.db}"


@dataclass
class SentinelConfig:
    """
    Failover coordination through Sentinel.

    Attributes:
        enabled: Whether Sentinel drives primary discovery
        master_name: Name of the monitored primary
        sentinel_addrs: Sentinel node addresses ("host:port")
        sentinel_password: Password for the Sentinel nodes themselves
        sentinel_username: Username for the Sentinel nodes themselves
    """
    enabled: bool = False
    master_name: str = ""
    sentinel_addrs: List[str] = field(default_factory=list)
    sentinel_password: Optional[str] = None
    sentinel_username: Optional[str] = None


@dataclass
class ReplicatedConfig:
    """
    Primary/replica configuration, with optional Sentinel failover.

    Without Sentinel the first address is the primary and the remaining
    addresses are read replicas.
    """
    addrs: List[str] = field(default_factory=list)
    password: Optional[str] = None
    db: int = 0
    ssl: bool = False
    sentinel: Optional[SentinelConfig] = None

    @property
    def uses_sentinel(self) -> bool:
        return self.sentinel is not None and self.sentinel.enabled


@dataclass
class ClusterConfig:
    """
    Sharded cluster configuration.

    Attributes:
        addrs: Startup node addresses
        password: Optional password
        max_redirects: Bound on MOVED/ASK redirects followed per command
        read_only: Serve read-only commands from replicas
    """
    addrs: List[str] = field(default_factory=list)
    password: Optional[str] = None
    ssl: bool = False
    max_redirects: int = 3
    read_only: bool = False


@dataclass
class CommonConfig:
    """
    Settings shared by all topologies. Durations are in seconds.

    Zero values are replaced by defaults in ``RedisConfig.set_defaults()``.
    """
    pool_size: int = 10
    pool_timeout: float = 5.0
    dial_timeout: float = 5.0
    read_timeout: float = 3.0
    max_retries: int = 3
    min_retry_backoff: float = 0.008
    max_retry_backoff: float = 0.512
    health_check: bool = True
    health_check_interval: float = 30.0
    enable_stats: bool = False
    stats_interval: float = 60.0
    client_name: str = "resilient_redis"


_COMMON_DEFAULTS = CommonConfig()


@dataclass
class RedisConfig:
    """
    Top-level configuration.

    Example:
        config = RedisConfig(
            mode=RedisMode.REPLICATED,
            master_slave=ReplicatedConfig(
                addrs=["redis-1:6379"],
                sentinel=SentinelConfig(
                    enabled=True,
                    master_name="mymaster",
                    sentinel_addrs=["sentinel-1:26379", "sentinel-2:26379"],
                ),
            ),
        )
    """
    mode: RedisMode = RedisMode.STANDALONE
    single: Optional[StandaloneConfig] = None
    master_slave: Optional[ReplicatedConfig] = None
    cluster: Optional[ClusterConfig] = None
    common: CommonConfig = field(default_factory=CommonConfig)

    def set_defaults(self) -> None:
        """Replace unset (zero) shared settings with their defaults."""
        for f in fields(CommonConfig):
            if f.name in ("health_check", "enable_stats"):
                continue
            if not getattr(self.common, f.name):
                setattr(self.common, f.name, getattr(_COMMON_DEFAULTS, f.name))
        if self.cluster is not None and self.cluster.max_redirects <= 0:
            self.cluster.max_redirects = 3

    def validate(self) -> None:
        """
        Check that the section required by the selected mode is present.

        Raises:
            InvalidConfigError: On a missing section, address or unknown mode
        """
        if not self.mode:
            self.mode = RedisMode.STANDALONE
        try:
            self.mode = RedisMode(self.mode)
        except ValueError:
            raise InvalidConfigError(
                "invalid mode, must be 'single', 'master_slave' or 'cluster'"
            ) from None

        if self.mode is RedisMode.STANDALONE:
            if self.single is None:
                raise InvalidConfigError("single config is required when mode is single")
            if not self.single.addr:
                raise InvalidConfigError("single.addr is required")
            parse_address(self.single.addr)

        elif self.mode is RedisMode.REPLICATED:
            ms = self.master_slave
            if ms is None:
                raise InvalidConfigError(
                    "master_slave config is required when mode is master_slave"
                )
            if not ms.addrs and not ms.uses_sentinel:
                raise InvalidConfigError("master_slave.addrs is required")
            if ms.uses_sentinel:
                if not ms.sentinel.master_name:
                    raise InvalidConfigError(
                        "sentinel.master_name is required when sentinel is enabled"
                    )
                if not ms.sentinel.sentinel_addrs:
                    raise InvalidConfigError(
                        "sentinel.sentinel_addrs is required when sentinel is enabled"
                    )
                for addr in ms.sentinel.sentinel_addrs:
                    parse_address(addr)
            for addr in ms.addrs:
                parse_address(addr)

        elif self.mode is RedisMode.CLUSTER:
            if self.cluster is None:
                raise InvalidConfigError("cluster config is required when mode is cluster")
            if not self.cluster.addrs:
                raise InvalidConfigError("cluster.addrs is required")
            for addr in self.cluster.addrs:
                parse_address(addr)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RedisConfig":
        """
        Build a configuration from a plain mapping (e.g. loaded JSON/YAML).

        Keys mirror the dataclass field names; unknown keys are rejected.
        """
        try:
            mode = RedisMode(data.get("mode") or RedisMode.STANDALONE)
        except ValueError:
            raise InvalidConfigError(f"unsupported mode: {data.get('mode')}") from None

        master_slave = None
        if data.get("master_slave") is not None:
            ms = dict(data["master_slave"])
            sentinel = ms.pop("sentinel", None)
            master_slave = _build(ReplicatedConfig, ms, "master_slave")
            if sentinel is not None:
                master_slave.sentinel = _build(SentinelConfig, sentinel, "sentinel")

        return cls(
            mode=mode,
            single=_build(StandaloneConfig, data.get("single"), "single"),
            master_slave=master_slave,
            cluster=_build(ClusterConfig, data.get("cluster"), "cluster"),
            common=_build(CommonConfig, data.get("common"), "common") or CommonConfig(),
        )


def _build(kind, section: Optional[Mapping[str, Any]], name: str):
    if section is None:
        return None
    known = {f.name for f in fields(kind)}
    unknown = set(section) - known
    if unknown:
        raise InvalidConfigError(f"unknown {name} option(s): {', '.join(sorted(unknown))}")
    return kind(**section)
