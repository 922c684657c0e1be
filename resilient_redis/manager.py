"""
Redis manager.

Owns the store session, health state, statistics and script registry for one
topology, and exposes every store-bound operation as a coroutine returning a
``CacheResult``.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from redis.exceptions import NoScriptError, RedisClusterException, RedisError, ResponseError

from .config import RedisConfig, StandaloneConfig
from .errors import (
    CacheResult,
    ConnectionFailedError,
    ErrorCode,
    InvalidOperationError,
    KeyNotFoundError,
    RedisManagerError,
    UnexpectedReplyError,
    classify_error,
)
from .health import HealthMonitor, HealthState, StatsReporter
from .operations import OperationsMixin
from .pipeline import RedisPipeline
from .primitives import ScriptPrimitivesMixin
from .retry import retry_result
from .scripts import RegisteredScript, ScriptRegistry, register_builtin_scripts
from .session import ReplicaSetClient, StoreSession
from .stats import RedisStats, StatsSnapshot

TRANSPORT_EXCEPTIONS = (RedisError, RedisClusterException, OSError)

Decoder = Callable[[Any], Any]


def _is_noscript(error: ResponseError) -> bool:
    return isinstance(error, NoScriptError) or str(error).upper().startswith("NOSCRIPT")


class RedisManager(OperationsMixin, ScriptPrimitivesMixin):
    """
    Resilient access layer over one Redis topology.

    Store-bound calls never raise for store problems; they return a
    ``CacheResult`` carrying an ``ErrorCode``. While the health flag is down
    every call fails fast with ``CONNECTION_FAILED`` without touching the
    network.

    Example:
        async with RedisManager(config) as manager:
            result = await manager.try_lock("orders:42", token, ttl=5000)
            if result.ok and result.value:
                ...
    """

    def __init__(
        self,
        config: Optional[RedisConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Raises:
            InvalidConfigError: If the configuration is invalid
        """
        self.config = config or RedisConfig(single=StandaloneConfig(addr="localhost:6379"))
        self.config.set_defaults()
        self.config.validate()
        self.logger = logger or logging.getLogger(self.__class__.__name__)

        self._session = StoreSession(self.config, logger=logger)
        self._registry = ScriptRegistry()
        register_builtin_scripts(self._registry)
        self._stats = RedisStats()
        self._health = HealthState()

        self._stop_event = asyncio.Event()
        self._tasks: List[asyncio.Task] = []
        self._init_lock = asyncio.Lock()
        self._initialized = False
        self._closed = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def initialize(self) -> None:
        """
        Connect, mark healthy and start the background tasks.

        Safe to call concurrently; only the first call connects.

        Raises:
            ConnectionFailedError: If the store is unreachable
            InvalidOperationError: If the manager was already closed
        """
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return
            if self._closed:
                raise InvalidOperationError("manager is closed")

            await self._session.connect()
            self._health.set(True)

            common = self.config.common
            if common.health_check:
                monitor = HealthMonitor(
                    self._session,
                    self._health,
                    common.health_check_interval,
                    self._stop_event,
                    stats=self._stats,
                    logger=self.logger,
                )
                self._tasks.append(monitor.start())
            if common.enable_stats:
                reporter = StatsReporter(
                    self._stats, common.stats_interval, self._stop_event, logger=self.logger
                )
                self._tasks.append(reporter.start())

            self._initialized = True
            self.logger.info(f"Redis manager initialized, mode: {self.config.mode.value}")

    async def close(self) -> None:
        """Stop the background tasks and release the session. Runs once."""
        async with self._init_lock:
            if self._closed:
                self.logger.warning("Redis manager already closed")
                return
            self._closed = True

        self._stop_event.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks.clear()

        self._health.set(False)
        await self._session.close()
        self._initialized = False
        self.logger.info("Redis manager closed")

    async def __aenter__(self) -> "RedisManager":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # =========================================================================
    # Accessors
    # =========================================================================

    @property
    def session(self) -> StoreSession:
        return self._session

    @property
    def stats(self) -> RedisStats:
        return self._stats

    @property
    def registry(self) -> ScriptRegistry:
        return self._registry

    def get_stats(self) -> StatsSnapshot:
        return self._stats.snapshot()

    def is_healthy(self) -> bool:
        return self._health.is_healthy()

    def get_client(self) -> Any:
        """
        The raw redis-py client for commands not covered by the manager.

        Calls made on it bypass the health gate and statistics.

        Raises:
            ConnectionFailedError: If the manager is not initialized
        """
        client = self._session.client
        if client is None:
            raise ConnectionFailedError("redis manager is not initialized")
        return client

    def register_script(
        self,
        name: str,
        source: str,
        num_keys: Optional[int] = None,
        num_args: Optional[int] = None,
    ) -> RegisteredScript:
        return self._registry.register(name, source, num_keys=num_keys, num_args=num_args)

    def get_script(self, name: str) -> Optional[str]:
        script = self._registry.get(name)
        return script.source if script is not None else None

    # =========================================================================
    # Dispatch
    # =========================================================================

    def _unhealthy(self) -> CacheResult:
        return CacheResult.failure(
            ErrorCode.CONNECTION_FAILED, ConnectionFailedError("redis is unhealthy")
        )

    def _rejected(self, error: RedisManagerError) -> CacheResult:
        """
        Result for a call refused before dispatch.

        The health gate answers first: while unhealthy this is
        ``CONNECTION_FAILED`` (counted like any gated call), otherwise the
        local error, which is not counted.
        """
        if self._session.client is None or not self._health.is_healthy():
            self._stats.incr_total()
            return self._unhealthy()
        return CacheResult.failure(error.code, error)

    async def _execute(
        self,
        call: Callable[[Any], Awaitable[Any]],
        decode: Optional[Decoder] = None,
        not_found_on_nil: bool = False,
        read_only: bool = False,
    ) -> CacheResult:
        """
        Run one store-bound call through the health gate, classify the
        outcome and update the statistics.

        Args:
            call: Coroutine function taking the live client
            decode: Converts the raw reply; may raise ``RedisManagerError``
                (``InvalidOperationError`` is not counted as an error) or
                ``ValueError``/``TypeError`` for an unexpected reply shape
            not_found_on_nil: Map a nil reply to ``KEY_NOT_FOUND``
            read_only: Serve from a replica when the session is a static replica set
        """
        self._stats.incr_total()
        client = self._session.client
        if client is None or not self._health.is_healthy():
            return self._unhealthy()
        if read_only and isinstance(client, ReplicaSetClient):
            client = client.replica()

        try:
            reply = await call(client)
        except InvalidOperationError as e:
            return CacheResult.failure(e.code, e)
        except TRANSPORT_EXCEPTIONS as e:
            self._stats.incr_error()
            self.logger.debug(f"Redis command failed: {type(e).__name__}: {e}")
            return CacheResult.failure(classify_error(e), e)

        if reply is None and not_found_on_nil:
            return CacheResult.failure(ErrorCode.KEY_NOT_FOUND, KeyNotFoundError())
        if decode is None:
            return CacheResult.success(reply)

        try:
            return CacheResult.success(decode(reply))
        except InvalidOperationError as e:
            return CacheResult.failure(e.code, e)
        except RedisManagerError as e:
            self._stats.incr_error()
            return CacheResult.failure(e.code, e)
        except (ValueError, TypeError) as e:
            self._stats.incr_error()
            error = UnexpectedReplyError(f"cannot decode reply {reply!r}", cause=e)
            return CacheResult.failure(error.code, error)

    async def ping(self) -> CacheResult[bool]:
        return await self._execute(lambda c: c.ping(), decode=bool)

    # =========================================================================
    # Script evaluation
    # =========================================================================

    async def eval(self, source: str, keys: Sequence[str] = (), *args: Any) -> CacheResult:
        """Evaluate Lua source directly."""
        return await self._execute(lambda c: c.eval(source, len(keys), *keys, *args))

    async def eval_sha(self, sha: str, keys: Sequence[str] = (), *args: Any) -> CacheResult:
        """Evaluate a script previously loaded into the store by its SHA1 digest."""
        return await self._execute(lambda c: c.evalsha(sha, len(keys), *keys, *args))

    async def eval_script(self, name: str, keys: Sequence[str] = (), *args: Any) -> CacheResult:
        """
        Evaluate a registered script by name.

        An unknown name or an arity mismatch is a local ``INVALID_OPERATION``:
        nothing is sent to the store and no statistics are recorded. While
        unhealthy the health gate answers first with ``CONNECTION_FAILED``.
        """
        return await self._eval_registered(name, keys, args)

    async def _eval_registered(
        self,
        name: str,
        keys: Sequence[str],
        args: Sequence[Any],
        decode: Optional[Decoder] = None,
    ) -> CacheResult:
        script = self._registry.get(name)
        if script is None:
            return self._rejected(InvalidOperationError(f"script not found: {name}"))
        try:
            self._registry.check_arity(script, keys, args)
        except InvalidOperationError as e:
            return self._rejected(e)

        keys = list(keys)

        async def call(client: Any) -> Any:
            try:
                return await client.evalsha(script.sha, len(keys), *keys, *args)
            except ResponseError as e:
                if not _is_noscript(e):
                    raise
                self.logger.debug(f"Script {name} not cached, falling back to EVAL")
                return await client.eval(script.source, len(keys), *keys, *args)

        return await self._execute(call, decode=decode)

    # =========================================================================
    # Batching and retry
    # =========================================================================

    def pipeline(self, transaction: bool = False) -> RedisPipeline:
        """
        Record commands for one round trip.

        Example:
            pipe = manager.pipeline()
            pipe.set("a", "1").incr("counter")
            result = await pipe.execute()
        """
        return RedisPipeline(self, transaction=transaction)

    def with_retry(
        self,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
    ) -> Callable:
        """
        Decorator retrying a caller coroutine on connectivity failures (see ``retry_result``).

        Defaults come from ``common.max_retries`` and ``common.min_retry_backoff``;
        single delays are capped at ``common.max_retry_backoff``.

        Example:
            @manager.with_retry(max_retries=5)
            async def take_slot():
                return await manager.safe_incr("slots", 1, 10)
        """
        common = self.config.common
        return retry_result(
            max_retries=max_retries if max_retries is not None else common.max_retries,
            base_delay=base_delay if base_delay is not None else common.min_retry_backoff,
            max_delay=common.max_retry_backoff,
            logger=self.logger,
        )
