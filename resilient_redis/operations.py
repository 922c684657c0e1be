"""
Passthrough command surface.

Thin adapters over redis-py commands. Each one goes through the manager's
health gate, statistics and error classification. Clients are created with
``decode_responses=False``; text entry points decode replies as UTF-8 and
the ``*_bytes`` variants return them untouched.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set, Tuple, Union

from .errors import CacheResult, InvalidOperationError
from .primitives import TTL, ttl_millis

Value = Union[str, bytes, int, float]


@dataclass
class ScanResult:
    """One SCAN page: continue with ``cursor`` until it is 0."""
    cursor: int
    keys: List[str] = field(default_factory=list)


def _text(reply: Any) -> Any:
    if isinstance(reply, bytes):
        return reply.decode("utf-8")
    return reply


def _text_list(reply: Any) -> List[Any]:
    return [_text(item) for item in reply]


def _text_set(reply: Any) -> Set[Any]:
    return {_text(item) for item in reply}


def _text_dict(reply: Any) -> Dict[Any, Any]:
    return {_text(k): _text(v) for k, v in reply.items()}


def _scored(reply: Any) -> List[Tuple[str, float]]:
    return [(_text(member), float(score)) for member, score in reply]


def _scan(reply: Any) -> ScanResult:
    cursor, keys = reply
    return ScanResult(cursor=int(cursor), keys=_text_list(keys))


class OperationsMixin:
    """
    Basic data operations.

    Requires ``_execute(call, decode=None, not_found_on_nil=False, read_only=False)``
    and ``_rejected(error)`` from the host class. Reads of a missing key
    return ``KEY_NOT_FOUND``.
    """

    def _read(self, call: Callable[[Any], Awaitable[Any]], **kwargs: Any) -> Awaitable[CacheResult]:
        return self._execute(call, read_only=True, **kwargs)

    # -- keys -----------------------------------------------------------------

    async def delete(self, *keys: str) -> CacheResult[int]:
        return await self._execute(lambda c: c.delete(*keys))

    async def exists(self, *keys: str) -> CacheResult[int]:
        return await self._read(lambda c: c.exists(*keys))

    async def expire(self, key: str, ttl: TTL) -> CacheResult[bool]:
        try:
            millis = ttl_millis(ttl)
        except InvalidOperationError as e:
            return self._rejected(e)
        return await self._execute(lambda c: c.pexpire(key, millis), decode=bool)

    async def ttl(self, key: str) -> CacheResult[int]:
        """Remaining time to live in milliseconds (-1 no expiry, -2 missing key)."""
        return await self._read(lambda c: c.pttl(key))

    async def rename(self, src: str, dst: str) -> CacheResult[bool]:
        return await self._execute(lambda c: c.rename(src, dst), decode=bool)

    async def rename_nx(self, src: str, dst: str) -> CacheResult[bool]:
        return await self._execute(lambda c: c.renamenx(src, dst), decode=bool)

    async def type(self, key: str) -> CacheResult[str]:
        return await self._read(lambda c: c.type(key), decode=_text)

    async def keys(self, pattern: str = "*") -> CacheResult[List[str]]:
        return await self._read(lambda c: c.keys(pattern), decode=_text_list)

    async def scan(
        self, cursor: int = 0, match: Optional[str] = None, count: Optional[int] = None
    ) -> CacheResult[ScanResult]:
        return await self._read(
            lambda c: c.scan(cursor=cursor, match=match, count=count), decode=_scan
        )

    # -- strings --------------------------------------------------------------

    async def get(self, key: str) -> CacheResult[str]:
        return await self._read(lambda c: c.get(key), decode=_text, not_found_on_nil=True)

    async def get_bytes(self, key: str) -> CacheResult[bytes]:
        return await self._read(lambda c: c.get(key), not_found_on_nil=True)

    async def set(self, key: str, value: Value, ttl: Optional[TTL] = None) -> CacheResult[bool]:
        """Store ``value``; a ttl of None or 0 means no expiry."""
        try:
            px = ttl_millis(ttl) if ttl else None
        except InvalidOperationError as e:
            return self._rejected(e)
        return await self._execute(lambda c: c.set(key, value, px=px), decode=bool)

    async def set_bytes(
        self, key: str, value: bytes, ttl: Optional[TTL] = None
    ) -> CacheResult[bool]:
        return await self.set(key, value, ttl)

    async def set_nx(self, key: str, value: Value, ttl: Optional[TTL] = None) -> CacheResult[bool]:
        """Store ``value`` only if ``key`` is absent. False when it already exists."""
        try:
            px = ttl_millis(ttl) if ttl else None
        except InvalidOperationError as e:
            return self._rejected(e)
        return await self._execute(
            lambda c: c.set(key, value, px=px, nx=True), decode=bool
        )

    async def get_set(self, key: str, value: Value) -> CacheResult[str]:
        """Store ``value`` and return the previous one."""
        return await self._execute(
            lambda c: c.getset(key, value), decode=_text, not_found_on_nil=True
        )

    async def mget(self, *keys: str) -> CacheResult[List[Optional[str]]]:
        """Values in key order; missing keys are None."""
        return await self._read(lambda c: c.mget(keys), decode=_text_list)

    async def mget_bytes(self, *keys: str) -> CacheResult[List[Optional[bytes]]]:
        return await self._read(lambda c: c.mget(keys), decode=list)

    async def mset(self, mapping: Mapping[str, Value]) -> CacheResult[bool]:
        return await self._execute(lambda c: c.mset(dict(mapping)), decode=bool)

    async def incr(self, key: str) -> CacheResult[int]:
        return await self._execute(lambda c: c.incrby(key, 1))

    async def incr_by(self, key: str, amount: int) -> CacheResult[int]:
        return await self._execute(lambda c: c.incrby(key, amount))

    async def decr(self, key: str) -> CacheResult[int]:
        return await self._execute(lambda c: c.decrby(key, 1))

    async def decr_by(self, key: str, amount: int) -> CacheResult[int]:
        return await self._execute(lambda c: c.decrby(key, amount))

    # -- hashes ---------------------------------------------------------------

    async def hget(self, key: str, field: str) -> CacheResult[str]:
        return await self._read(
            lambda c: c.hget(key, field), decode=_text, not_found_on_nil=True
        )

    async def hget_bytes(self, key: str, field: str) -> CacheResult[bytes]:
        return await self._read(lambda c: c.hget(key, field), not_found_on_nil=True)

    async def hset(self, key: str, field: str, value: Value) -> CacheResult[int]:
        """Returns 1 if the field is new, 0 if it was overwritten."""
        return await self._execute(lambda c: c.hset(key, field, value))

    async def hmset(self, key: str, mapping: Mapping[str, Value]) -> CacheResult[int]:
        return await self._execute(lambda c: c.hset(key, mapping=dict(mapping)))

    async def hmget(self, key: str, *fields: str) -> CacheResult[List[Optional[str]]]:
        return await self._read(lambda c: c.hmget(key, list(fields)), decode=_text_list)

    async def hgetall(self, key: str) -> CacheResult[Dict[str, str]]:
        return await self._read(lambda c: c.hgetall(key), decode=_text_dict)

    async def hdel(self, key: str, *fields: str) -> CacheResult[int]:
        return await self._execute(lambda c: c.hdel(key, *fields))

    async def hexists(self, key: str, field: str) -> CacheResult[bool]:
        return await self._read(lambda c: c.hexists(key, field), decode=bool)

    async def hkeys(self, key: str) -> CacheResult[List[str]]:
        return await self._read(lambda c: c.hkeys(key), decode=_text_list)

    async def hvals(self, key: str) -> CacheResult[List[str]]:
        return await self._read(lambda c: c.hvals(key), decode=_text_list)

    async def hlen(self, key: str) -> CacheResult[int]:
        return await self._read(lambda c: c.hlen(key))

    async def hincr_by(self, key: str, field: str, amount: int) -> CacheResult[int]:
        return await self._execute(lambda c: c.hincrby(key, field, amount))

    # -- lists ----------------------------------------------------------------

    async def lpush(self, key: str, *values: Value) -> CacheResult[int]:
        return await self._execute(lambda c: c.lpush(key, *values))

    async def rpush(self, key: str, *values: Value) -> CacheResult[int]:
        return await self._execute(lambda c: c.rpush(key, *values))

    async def lpop(self, key: str) -> CacheResult[str]:
        return await self._execute(lambda c: c.lpop(key), decode=_text, not_found_on_nil=True)

    async def rpop(self, key: str) -> CacheResult[str]:
        return await self._execute(lambda c: c.rpop(key), decode=_text, not_found_on_nil=True)

    async def lrange(self, key: str, start: int, stop: int) -> CacheResult[List[str]]:
        return await self._read(lambda c: c.lrange(key, start, stop), decode=_text_list)

    async def llen(self, key: str) -> CacheResult[int]:
        return await self._read(lambda c: c.llen(key))

    # -- sets -----------------------------------------------------------------

    async def sadd(self, key: str, *members: Value) -> CacheResult[int]:
        return await self._execute(lambda c: c.sadd(key, *members))

    async def srem(self, key: str, *members: Value) -> CacheResult[int]:
        return await self._execute(lambda c: c.srem(key, *members))

    async def smembers(self, key: str) -> CacheResult[Set[str]]:
        return await self._read(lambda c: c.smembers(key), decode=_text_set)

    async def sismember(self, key: str, member: Value) -> CacheResult[bool]:
        return await self._read(lambda c: c.sismember(key, member), decode=bool)

    async def scard(self, key: str) -> CacheResult[int]:
        return await self._read(lambda c: c.scard(key))

    # -- sorted sets ----------------------------------------------------------

    async def zadd(self, key: str, mapping: Mapping[str, float]) -> CacheResult[int]:
        return await self._execute(lambda c: c.zadd(key, dict(mapping)))

    async def zrem(self, key: str, *members: str) -> CacheResult[int]:
        return await self._execute(lambda c: c.zrem(key, *members))

    async def zrange(self, key: str, start: int, stop: int) -> CacheResult[List[str]]:
        return await self._read(lambda c: c.zrange(key, start, stop), decode=_text_list)

    async def zrange_with_scores(
        self, key: str, start: int, stop: int
    ) -> CacheResult[List[Tuple[str, float]]]:
        return await self._read(
            lambda c: c.zrange(key, start, stop, withscores=True), decode=_scored
        )

    async def zrevrange(self, key: str, start: int, stop: int) -> CacheResult[List[str]]:
        return await self._read(lambda c: c.zrevrange(key, start, stop), decode=_text_list)

    async def zscore(self, key: str, member: str) -> CacheResult[float]:
        return await self._read(
            lambda c: c.zscore(key, member), decode=float, not_found_on_nil=True
        )

    async def zcard(self, key: str) -> CacheResult[int]:
        return await self._read(lambda c: c.zcard(key))

    async def zcount(self, key: str, min: Union[float, str], max: Union[float, str]) -> CacheResult[int]:
        return await self._read(lambda c: c.zcount(key, min, max))

    async def zrank(self, key: str, member: str) -> CacheResult[int]:
        return await self._read(lambda c: c.zrank(key, member), not_found_on_nil=True)

    async def zincr_by(self, key: str, amount: float, member: str) -> CacheResult[float]:
        return await self._execute(lambda c: c.zincrby(key, amount, member), decode=float)

    # -- bitmaps --------------------------------------------------------------

    async def getbit(self, key: str, offset: int) -> CacheResult[int]:
        return await self._read(lambda c: c.getbit(key, offset))

    async def setbit(self, key: str, offset: int, value: int) -> CacheResult[int]:
        """Returns the previous bit value."""
        return await self._execute(lambda c: c.setbit(key, offset, value))

    async def bitcount(
        self, key: str, start: Optional[int] = None, end: Optional[int] = None
    ) -> CacheResult[int]:
        return await self._read(lambda c: c.bitcount(key, start, end))
