"""
Store session.

Holds one live client matching the configured topology and answers
liveness probes appropriate to that topology:

- Standalone: pooled client, single ping
- Replicated with Sentinel: failover-aware client from ``master_for``,
  single ping (the client re-discovers the primary on its own)
- Replicated without Sentinel: statically addressed ``ReplicaSetClient``,
  single ping against the aggregate handle
- Cluster: ``RedisCluster``, every primary pinged individually
"""

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import redis.asyncio as redis
from redis.asyncio.cluster import ClusterNode, RedisCluster
from redis.asyncio.sentinel import Sentinel
from redis.exceptions import RedisClusterException, RedisError

from .config import RedisConfig, RedisMode, parse_address
from .errors import ConnectionFailedError, InvalidConfigError

PROBE_EXCEPTIONS = (RedisError, RedisClusterException, OSError)


@dataclass
class FailoverTopology:
    """
    Snapshot of a Sentinel-monitored primary and its replicas.

    Attributes:
        master_name: Name of the monitored primary
        master_address: (host, port) of the current primary
        replica_addresses: (host, port) of each replica
        sentinel_count: Number of Sentinels monitoring the primary
        is_healthy: Primary flagged as master and not subjectively/objectively down
        quorum: Sentinels required to agree on a failover
    """
    master_name: str
    master_address: Optional[Tuple[str, int]] = None
    replica_addresses: List[Tuple[str, int]] = field(default_factory=list)
    sentinel_count: int = 0
    is_healthy: bool = False
    quorum: int = 2


class ReplicaSetClient:
    """
    Aggregate handle over statically addressed nodes, no quorum logic.

    Commands are forwarded to the primary (the first address); ``replica()``
    hands out the read replicas round-robin and serves the manager's
    read-only commands.
    """

    def __init__(self, primary: redis.Redis, replicas: Optional[List[redis.Redis]] = None):
        self.primary = primary
        self.replicas = list(replicas or [])
        self._rotation = itertools.cycle(self.replicas) if self.replicas else None

    def __getattr__(self, name: str) -> Any:
        return getattr(self.primary, name)

    def replica(self) -> redis.Redis:
        """Next replica in rotation, or the primary when none are configured."""
        if self._rotation is None:
            return self.primary
        return next(self._rotation)

    async def ping(self, **kwargs) -> bool:
        return await self.primary.ping(**kwargs)

    async def aclose(self) -> None:
        for node in [self.primary, *self.replicas]:
            await node.aclose()


class StoreSession:
    """
    One logical handle to the store for a fixed topology.

    ``connect()`` dials and probes once; failure is fatal and reported as
    ``ConnectionFailedError``. After that, ``probe()`` is driven by the
    health monitor and records the last known reachability.
    """

    def __init__(
        self,
        config: RedisConfig,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.logger = logger or logging.getLogger(self.__class__.__name__)

        self._client: Any = None
        self._sentinel: Optional[Sentinel] = None
        self._reachable = False

    @property
    def mode(self) -> RedisMode:
        return self.config.mode

    @property
    def client(self) -> Any:
        """The live client. None until ``connect()`` succeeds."""
        return self._client

    @property
    def reachable(self) -> bool:
        """Outcome of the last probe."""
        return self._reachable

    def is_sentinel_mode(self) -> bool:
        ms = self.config.master_slave
        return self.mode is RedisMode.REPLICATED and ms is not None and ms.uses_sentinel

    def _connection_kwargs(self) -> Dict[str, Any]:
        """
        Transport options shared by every topology.

        Internal command retries are disabled; retries are an
        application-level decision (see ``RedisManager.with_retry``).
        """
        common = self.config.common
        return {
            "socket_timeout": common.read_timeout,
            "socket_connect_timeout": common.dial_timeout,
            "retry_on_timeout": False,
            "health_check_interval": common.health_check_interval,
            "client_name": common.client_name,
            "decode_responses": False,
        }

    def _create_standalone_client(self) -> redis.Redis:
        single = self.config.single
        pool = redis.BlockingConnectionPool.from_url(
            single.url,
            max_connections=self.config.common.pool_size,
            timeout=self.config.common.pool_timeout,
            **self._connection_kwargs(),
        )
        self.logger.info(
            f"Redis pool created: {single.addr} "
            f"(max_connections={self.config.common.pool_size})"
        )
        return redis.Redis(connection_pool=pool)

    def _create_sentinel(self) -> Sentinel:
        ms = self.config.master_slave
        sentinel_cfg = ms.sentinel

        # Options for the Sentinel nodes themselves (auth + TLS)
        sentinel_kwargs: Dict[str, Any] = {
            "client_name": f"{self.config.common.client_name}_sentinel",
        }
        if sentinel_cfg.sentinel_password is not None:
            sentinel_kwargs["password"] = sentinel_cfg.sentinel_password
        if sentinel_cfg.sentinel_username is not None:
            sentinel_kwargs["username"] = sentinel_cfg.sentinel_username
        if ms.ssl:
            sentinel_kwargs["ssl"] = True

        sentinel = Sentinel(
            [parse_address(addr) for addr in sentinel_cfg.sentinel_addrs],
            sentinel_kwargs=sentinel_kwargs,
            socket_timeout=self.config.common.read_timeout,
            socket_connect_timeout=self.config.common.dial_timeout,
            retry_on_timeout=False,
            password=ms.password,
            ssl=ms.ssl,
            decode_responses=False,
        )
        self.logger.info(
            f"Redis Sentinel initialized with hosts: {sentinel_cfg.sentinel_addrs} "
            f"(master={sentinel_cfg.master_name})"
        )
        return sentinel

    def _create_failover_client(self) -> redis.Redis:
        ms = self.config.master_slave
        if self._sentinel is None:
            self._sentinel = self._create_sentinel()
        return self._sentinel.master_for(
            ms.sentinel.master_name,
            db=ms.db,
            ssl=ms.ssl,
            password=ms.password,
            max_connections=self.config.common.pool_size,
            **self._connection_kwargs(),
        )

    def _create_node_client(self, addr: str, name_suffix: str = "") -> redis.Redis:
        ms = self.config.master_slave
        host, port = parse_address(addr)
        kwargs = self._connection_kwargs()
        kwargs["client_name"] = f"{kwargs['client_name']}{name_suffix}"
        pool = redis.BlockingConnectionPool(
            host=host,
            port=port,
            db=ms.db,
            password=ms.password,
            max_connections=self.config.common.pool_size,
            timeout=self.config.common.pool_timeout,
            **({"connection_class": redis.SSLConnection} if ms.ssl else {}),
            **kwargs,
        )
        return redis.Redis(connection_pool=pool)

    def _create_replica_set_client(self) -> ReplicaSetClient:
        addrs = self.config.master_slave.addrs
        primary = self._create_node_client(addrs[0])
        replicas = [self._create_node_client(addr, "_replica") for addr in addrs[1:]]
        self.logger.info(f"Redis replica set client created, addrs: {','.join(addrs)}")
        return ReplicaSetClient(primary, replicas)

    def _create_cluster_client(self) -> RedisCluster:
        cluster_cfg = self.config.cluster
        kwargs = self._connection_kwargs()
        kwargs.pop("retry_on_timeout")
        client = RedisCluster(
            startup_nodes=[ClusterNode(*parse_address(addr)) for addr in cluster_cfg.addrs],
            password=cluster_cfg.password,
            ssl=cluster_cfg.ssl,
            read_from_replicas=cluster_cfg.read_only,
            max_connections=self.config.common.pool_size,
            **kwargs,
        )
        # Redirect budget (MOVED/ASK) per command
        client.RedisClusterRequestTTL = cluster_cfg.max_redirects
        read_mode = ", read_from_replica: enabled" if cluster_cfg.read_only else ""
        self.logger.info(
            f"Redis cluster client created, addrs: {','.join(cluster_cfg.addrs)}{read_mode}"
        )
        return client

    def _build_client(self) -> Any:
        if self.mode is RedisMode.STANDALONE:
            return self._create_standalone_client()
        if self.mode is RedisMode.REPLICATED:
            if self.is_sentinel_mode():
                return self._create_failover_client()
            return self._create_replica_set_client()
        if self.mode is RedisMode.CLUSTER:
            return self._create_cluster_client()
        raise InvalidConfigError(f"unsupported mode: {self.mode}")

    async def connect(self) -> None:
        """
        Dial the store and run one reachability probe.

        Raises:
            ConnectionFailedError: If the store cannot be dialed or probed.
                Anything dialed is closed before raising.
            InvalidConfigError: If the mode is unsupported
        """
        if self._client is not None:
            return

        self._client = self._build_client()
        try:
            if self.mode is RedisMode.CLUSTER:
                await self._client.initialize()
            await self.probe()
        except PROBE_EXCEPTIONS as e:
            self.logger.error(
                f"Redis {self.mode.value} connection failed: {type(e).__name__}: {e}"
            )
            await self.close()
            raise ConnectionFailedError(cause=e) from e

        self.logger.info(f"Redis {self.mode.value} client initialized successfully")

    async def probe(self) -> None:
        """
        Run one topology-specific liveness check.

        Raises:
            ConnectionFailedError: If no client has been dialed
            RedisError / RedisClusterException / OSError: On probe failure
        """
        client = self._client
        if client is None:
            self._reachable = False
            raise ConnectionFailedError("session is not connected")

        try:
            if self.mode is RedisMode.CLUSTER:
                await self._probe_cluster(client)
            else:
                await client.ping()
        except Exception:
            self._reachable = False
            raise
        self._reachable = True

    async def _probe_cluster(self, client: RedisCluster) -> None:
        # Conservative policy: one unreachable primary fails the whole round
        primaries = client.get_primaries()
        if not primaries:
            raise RedisClusterException("cluster has no known primaries")
        for node in primaries:
            try:
                await client.ping(target_nodes=node)
            except PROBE_EXCEPTIONS as e:
                self.logger.debug(f"Cluster primary {node.name} failed probe: {e}")
                raise

    async def close(self) -> None:
        """Release the client, its pools and any Sentinel connections."""
        client, self._client = self._client, None
        self._reachable = False
        if client is not None:
            try:
                await client.aclose()
            except Exception as e:
                self.logger.warning(f"Error closing Redis client: {type(e).__name__}: {e}")

        if self._sentinel is not None:
            for sentinel_conn in self._sentinel.sentinels:
                try:
                    await sentinel_conn.aclose()
                except Exception as e:
                    self.logger.warning(
                        f"Error closing Sentinel connection: {type(e).__name__}: {e}"
                    )
            self._sentinel = None
            self.logger.info("Redis Sentinel connections closed")

    # =========================================================================
    # Failover introspection (Sentinel mode only)
    # =========================================================================

    async def discover_master(self) -> Optional[Tuple[str, int]]:
        """
        Current primary address as reported by Sentinel.

        Returns:
            (host, port), or None when not in Sentinel mode or discovery fails
        """
        if self._sentinel is None:
            self.logger.warning("discover_master() called but not in Sentinel mode")
            return None
        try:
            return await self._sentinel.discover_master(
                self.config.master_slave.sentinel.master_name
            )
        except RedisError as e:
            self.logger.error(f"Failed to discover master: {type(e).__name__}: {e}")
            return None

    async def discover_replicas(self) -> List[Tuple[str, int]]:
        if self._sentinel is None:
            self.logger.warning("discover_replicas() called but not in Sentinel mode")
            return []
        try:
            replicas = await self._sentinel.discover_slaves(
                self.config.master_slave.sentinel.master_name
            )
            return list(replicas or [])
        except RedisError as e:
            self.logger.error(f"Failed to discover replicas: {type(e).__name__}: {e}")
            return []

    async def get_topology(self) -> Optional[FailoverTopology]:
        """
        Snapshot of the Sentinel-monitored topology.

        Sentinels are tried in order; SENTINEL MASTER and SENTINEL REPLICAS
        are batched into one round trip per Sentinel.

        Returns:
            FailoverTopology, or None when not in Sentinel mode or every
            Sentinel is unreachable
        """
        if self._sentinel is None:
            self.logger.warning("get_topology() called but not in Sentinel mode")
            return None

        master_name = self.config.master_slave.sentinel.master_name
        for sentinel_conn in self._sentinel.sentinels:
            try:
                pipe = sentinel_conn.pipeline(transaction=False)
                pipe.execute_command("SENTINEL", "MASTER", master_name)
                pipe.execute_command("SENTINEL", "REPLICAS", master_name)
                master_info, replicas_info = await pipe.execute()
            except (redis.ConnectionError, redis.TimeoutError) as e:
                self.logger.warning(f"Failed to query Sentinel: {type(e).__name__}: {e}")
                continue
            except RedisError as e:
                self.logger.error(f"Failed to get topology: {type(e).__name__}: {e}")
                return None
            return _parse_topology(master_name, master_info, replicas_info)

        self.logger.error("Failed to get topology: all Sentinels unreachable")
        return None


def _decode(value: Any) -> Any:
    return value.decode("utf-8") if isinstance(value, bytes) else value


def _pairs_to_dict(flat: Any) -> Dict[str, Any]:
    if isinstance(flat, dict):
        return {_decode(k): _decode(v) for k, v in flat.items()}
    if isinstance(flat, list):
        return {_decode(k): _decode(v) for k, v in zip(flat[::2], flat[1::2])}
    return {}


def _address(info: Dict[str, Any]) -> Optional[Tuple[str, int]]:
    host, port = info.get("ip"), info.get("port")
    if host and port:
        return host, int(port)
    return None


def _parse_topology(master_name: str, master_info: Any, replicas_info: Any) -> FailoverTopology:
    info = _pairs_to_dict(master_info)
    flags = str(info.get("flags", "")).split(",")

    replicas = []
    for replica in replicas_info if isinstance(replicas_info, list) else []:
        addr = _address(_pairs_to_dict(replica))
        if addr is not None:
            replicas.append(addr)

    return FailoverTopology(
        master_name=master_name,
        master_address=_address(info),
        replica_addresses=replicas,
        sentinel_count=int(info.get("num-other-sentinels", 0)) + 1 if info else 0,
        is_healthy="master" in flags and "s_down" not in flags and "o_down" not in flags,
        quorum=int(info.get("quorum", 2)),
    )
