"""
Atomic primitives built on the registered Lua scripts.

Each primitive is one script evaluation and is never retried internally.
Business outcomes (lock contended, ceiling reached) are successful results;
a reply outside the script's contract is an ``UnexpectedReplyError``.

In cluster mode the keys of a multi-key primitive must hash to one slot
(use hash tags such as ``{order:42}:a``).
"""

from datetime import timedelta
from typing import Any, Sequence, Union

from .errors import CacheResult, InvalidOperationError, UnexpectedReplyError
from .scripts import (
    SCRIPT_CHECK_EXPIRE,
    SCRIPT_CHECK_VALUE_AND_DEL,
    SCRIPT_DECR,
    SCRIPT_HDECR,
    SCRIPT_HINCR,
    SCRIPT_INCR,
    SCRIPT_INCR_WITH_LIMIT_AND_EXPIRE,
    SCRIPT_LOCK,
    SCRIPT_MULTI_LOCK,
    SCRIPT_MULTI_UNLOCK,
    SCRIPT_RENEW_LOCK,
    SCRIPT_UNLOCK,
)

# Reply of incr_with_limit_and_expire once the ceiling is reached
LIMIT_REACHED = -1

TTL = Union[int, timedelta]


def ttl_millis(ttl: TTL) -> int:
    if isinstance(ttl, timedelta):
        return int(ttl.total_seconds() * 1000)
    if isinstance(ttl, bool) or not isinstance(ttl, int):
        raise InvalidOperationError(f"ttl must be milliseconds or a timedelta, got {ttl!r}")
    return ttl


def int_reply(reply: Any) -> int:
    if isinstance(reply, bool) or not isinstance(reply, int):
        raise UnexpectedReplyError(f"expected integer reply, got {reply!r}")
    return reply


def flag_reply(reply: Any) -> bool:
    """1 -> True, 0 -> False, -1 -> invalid parameters."""
    value = int_reply(reply)
    if value == -1:
        raise InvalidOperationError("invalid script parameters")
    if value not in (0, 1):
        raise UnexpectedReplyError(f"expected 0 or 1, got {value}")
    return value == 1


def _limit_reply(reply: Any) -> int:
    value = int_reply(reply)
    if value < LIMIT_REACHED:
        raise UnexpectedReplyError(f"counter reply out of range: {value}")
    return value


class ScriptPrimitivesMixin:
    """
    Bounded counters and token locks.

    Requires ``_eval_registered(name, keys, args, decode)`` and
    ``_rejected(error)`` from the host class. Parameter checks run locally;
    while the store is unhealthy they yield to ``CONNECTION_FAILED``.
    """

    def _invalid(self, message: str) -> CacheResult:
        return self._rejected(InvalidOperationError(message))

    def _lock_params(self, token: str, ttl: TTL) -> int:
        if not token:
            raise InvalidOperationError("lock token must not be empty")
        millis = ttl_millis(ttl)
        if millis <= 0:
            raise InvalidOperationError(f"lock ttl must be positive, got {millis}ms")
        return millis

    # -- bounded counters ----------------------------------------------------

    async def safe_incr(self, key: str, delta: int, max: int) -> CacheResult[int]:
        """
        Add ``delta`` if the current value (absent = 0) is below ``max``.

        At the ceiling the unchanged value is returned as a success.
        """
        return await self._eval_registered(SCRIPT_INCR, [key], [delta, max], decode=int_reply)

    async def safe_hincr(self, key: str, field: str, delta: int, max: int) -> CacheResult[int]:
        # one KEY per call; the field is an argument
        return await self._eval_registered(
            SCRIPT_HINCR, [key], [field, delta, max], decode=int_reply
        )

    async def safe_decr(self, key: str, delta: int) -> CacheResult[int]:
        """Subtract ``delta`` if the current value is at least ``delta``."""
        return await self._eval_registered(SCRIPT_DECR, [key], [delta], decode=int_reply)

    async def safe_hdecr(self, key: str, field: str, delta: int) -> CacheResult[int]:
        return await self._eval_registered(SCRIPT_HDECR, [key], [field, delta], decode=int_reply)

    async def incr_with_limit_and_expire(
        self, key: str, delta: int, max: int, ttl: TTL
    ) -> CacheResult[int]:
        """
        Add ``delta`` and refresh the expiry, unless the value is already at ``max``.

        Returns:
            The new value, or ``LIMIT_REACHED`` (a successful result) once the
            ceiling is reached
        """
        try:
            millis = ttl_millis(ttl)
        except InvalidOperationError as e:
            return self._rejected(e)
        if millis <= 0:
            return self._invalid(f"ttl must be positive, got {millis}ms")
        return await self._eval_registered(
            SCRIPT_INCR_WITH_LIMIT_AND_EXPIRE,
            [key],
            [delta, max, millis],
            decode=_limit_reply,
        )

    # -- key helpers ------------------------------------------------------------

    async def set_expire_if_exists(self, key: str, ttl: TTL) -> CacheResult[bool]:
        """Set an expiry on ``key`` only if it exists. False when it does not."""
        try:
            millis = ttl_millis(ttl)
        except InvalidOperationError as e:
            return self._rejected(e)
        if millis <= 0:
            return self._invalid(f"ttl must be positive, got {millis}ms")
        return await self._eval_registered(SCRIPT_CHECK_EXPIRE, [key], [millis], decode=flag_reply)

    async def delete_if_value_matches(self, key: str, expected: str) -> CacheResult[bool]:
        return await self._eval_registered(
            SCRIPT_CHECK_VALUE_AND_DEL, [key], [expected], decode=flag_reply
        )

    # -- single-key lock --------------------------------------------------------

    async def try_lock(self, key: str, token: str, ttl: TTL) -> CacheResult[bool]:
        """
        Acquire ``key`` for ``token`` if nobody holds it.

        Returns:
            True if acquired, False if held elsewhere. An empty token or a
            non-positive ttl is ``INVALID_OPERATION``.
        """
        try:
            millis = self._lock_params(token, ttl)
        except InvalidOperationError as e:
            return self._rejected(e)
        return await self._eval_registered(SCRIPT_LOCK, [key], [token, millis], decode=flag_reply)

    async def release_lock(self, key: str, token: str) -> CacheResult[bool]:
        """Delete ``key`` only while it still holds ``token``."""
        if not token:
            return self._invalid("lock token must not be empty")
        return await self._eval_registered(SCRIPT_UNLOCK, [key], [token], decode=flag_reply)

    async def renew_lock(self, key: str, token: str, ttl: TTL) -> CacheResult[bool]:
        """Refresh the expiry of ``key`` only while it still holds ``token``."""
        try:
            millis = self._lock_params(token, ttl)
        except InvalidOperationError as e:
            return self._rejected(e)
        return await self._eval_registered(
            SCRIPT_RENEW_LOCK, [key], [token, millis], decode=flag_reply
        )

    # -- multi-key lock ---------------------------------------------------------

    async def try_multi_lock(self, keys: Sequence[str], token: str, ttl: TTL) -> CacheResult[bool]:
        """
        Acquire every key for ``token``, or none of them.

        A key already held by ``token`` counts as free; its expiry is reset.
        """
        if not keys:
            return self._invalid("multi lock requires at least one key")
        try:
            millis = self._lock_params(token, ttl)
        except InvalidOperationError as e:
            return self._rejected(e)
        return await self._eval_registered(
            SCRIPT_MULTI_LOCK, list(keys), [token, millis], decode=flag_reply
        )

    async def release_multi_lock(self, keys: Sequence[str], token: str) -> CacheResult[int]:
        """Release each key still holding ``token``; returns how many were released."""
        if not keys:
            return self._invalid("multi unlock requires at least one key")
        if not token:
            return self._invalid("lock token must not be empty")
        keys = list(keys)

        def count_reply(reply: Any) -> int:
            value = int_reply(reply)
            if not 0 <= value <= len(keys):
                raise UnexpectedReplyError(f"released count out of range: {value}")
            return value

        return await self._eval_registered(SCRIPT_MULTI_UNLOCK, keys, [token], decode=count_reply)
