"""
Lua script sources and the script registry.

The registry maps a logical name to its source text. It is independent of
any live session: registering never touches the network, and the SHA1 digest
used for EVALSHA is computed locally.

Reply contracts of the built-in scripts:

- incr / hincr:     current + delta (persisted) if current < max, else current
- decr / hdecr:     current - delta (persisted) if current >= delta, else current
- incr_with_limit_and_expire:
                    current + delta with the ttl refreshed, or -1 once
                    current >= max
- lock:             1 acquired, 0 held elsewhere, -1 invalid parameters
- unlock:           1 released, 0 not held by this token
- renew_lock:       1 renewed, 0 not held by this token, -1 invalid parameters
- multi_lock:       1 all acquired, 0 any held elsewhere, -1 invalid parameters
- multi_unlock:     number of keys released
- check_key_expire: 1 expiry set, 0 key missing
- check_value_and_del: 1 deleted, 0 value mismatch

All expiries are in milliseconds.
"""

import hashlib
import threading
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

from .errors import InvalidOperationError

SCRIPT_DECR = "decr_script"
SCRIPT_INCR = "incr_script"
SCRIPT_HDECR = "hdecr_script"
SCRIPT_HINCR = "hincr_script"
SCRIPT_INCR_WITH_LIMIT_AND_EXPIRE = "incr_with_limit_and_expire_script"
SCRIPT_CHECK_EXPIRE = "check_key_expire_script"
SCRIPT_CHECK_VALUE_AND_DEL = "check_value_and_del_script"
SCRIPT_LOCK = "lock_script"
SCRIPT_UNLOCK = "unlock_script"
SCRIPT_RENEW_LOCK = "renew_lock_script"
SCRIPT_MULTI_LOCK = "multi_lock_script"
SCRIPT_MULTI_UNLOCK = "multi_unlock_script"

# KEYS[1] = key, ARGV[1] = delta
DECR_SCRIPT = """
local cur = tonumber(redis.call('GET', KEYS[1]) or 0)
local decr = tonumber(ARGV[1])
if cur >= decr then
    return redis.call('DECRBY', KEYS[1], decr)
else
    return cur
end"""

# KEYS[1] = key, ARGV[1] = delta, ARGV[2] = max
INCR_SCRIPT = """
local cur = tonumber(redis.call('GET', KEYS[1]) or 0)
local incr = tonumber(ARGV[1])
local max = tonumber(ARGV[2])
if cur < max then
    return redis.call('INCRBY', KEYS[1], incr)
else
    return cur
end"""

# KEYS[1] = key, ARGV[1] = field, ARGV[2] = delta
HDECR_SCRIPT = """
local cur = tonumber(redis.call('HGET', KEYS[1], ARGV[1]) or 0)
local decr = tonumber(ARGV[2])
if cur >= decr then
    return redis.call('HINCRBY', KEYS[1], ARGV[1], -decr)
else
    return cur
end"""

# KEYS[1] = key, ARGV[1] = field, ARGV[2] = delta, ARGV[3] = max
HINCR_SCRIPT = """
local cur = tonumber(redis.call('HGET', KEYS[1], ARGV[1]) or 0)
local incr = tonumber(ARGV[2])
local max = tonumber(ARGV[3])
if cur < max then
    return redis.call('HINCRBY', KEYS[1], ARGV[1], incr)
else
    return cur
end"""

# KEYS[1] = key, ARGV[1] = delta, ARGV[2] = max, ARGV[3] = ttl (ms)
INCR_WITH_LIMIT_AND_EXPIRE_SCRIPT = """
local cur = tonumber(redis.call('GET', KEYS[1]) or 0)
local incr = tonumber(ARGV[1])
local max = tonumber(ARGV[2])
local ttl = tonumber(ARGV[3])
if cur >= max then
    return -1
end
local val = redis.call('INCRBY', KEYS[1], incr)
redis.call('PEXPIRE', KEYS[1], ttl)
return val"""

# KEYS[1] = key, ARGV[1] = ttl (ms)
CHECK_KEY_EXPIRE_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 1 then
    return redis.call('PEXPIRE', KEYS[1], ARGV[1])
else
    return 0
end"""

# KEYS[1] = key, ARGV[1] = expected value
CHECK_VALUE_AND_DEL_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    redis.call('DEL', KEYS[1])
    return 1
else
    return 0
end"""

# KEYS[1] = lock key, ARGV[1] = token, ARGV[2] = ttl (ms)
LOCK_SCRIPT = """
local key = KEYS[1]
local value = ARGV[1]
local ttl = tonumber(ARGV[2])

if not key or not value or value == '' or not ttl or ttl <= 0 then
    return -1
end

if redis.call('SET', key, value, 'NX', 'PX', ttl) then
    return 1
else
    return 0
end"""

# KEYS[1] = lock key, ARGV[1] = token
UNLOCK_SCRIPT = """
local key = KEYS[1]
local value = ARGV[1]

if not key or not value then
    return 0
end

if redis.call('GET', key) == value then
    redis.call('DEL', key)
    return 1
else
    return 0
end"""

# KEYS[1] = lock key, ARGV[1] = token, ARGV[2] = ttl (ms)
RENEW_LOCK_SCRIPT = """
local key = KEYS[1]
local value = ARGV[1]
local ttl = tonumber(ARGV[2])

if not key or not value or value == '' or not ttl or ttl <= 0 then
    return -1
end

if redis.call('GET', key) == value then
    redis.call('PEXPIRE', key, ttl)
    return 1
else
    return 0
end"""

# KEYS = lock keys, ARGV[1] = token, ARGV[2] = ttl (ms)
MULTI_LOCK_SCRIPT = """
local value = ARGV[1]
local ttl = tonumber(ARGV[2])

if not value or value == '' or not ttl or ttl <= 0 or #KEYS == 0 then
    return -1
end

-- read-only pass: every key must be free or already ours
for _, key in ipairs(KEYS) do
    local current = redis.call('GET', key)
    if current and current ~= value then
        return 0
    end
end

for _, key in ipairs(KEYS) do
    redis.call('SET', key, value, 'PX', ttl)
end

return 1"""

# KEYS = lock keys, ARGV[1] = token
MULTI_UNLOCK_SCRIPT = """
local value = ARGV[1]
local unlocked = 0

if not value or #KEYS == 0 then
    return 0
end

for _, key in ipairs(KEYS) do
    if redis.call('GET', key) == value then
        redis.call('DEL', key)
        unlocked = unlocked + 1
    end
end

return unlocked"""


@dataclass(frozen=True)
class RegisteredScript:
    """
    A registry entry.

    Attributes:
        name: Logical script name
        source: Lua source text
        sha: SHA1 hex digest of the source, as the store computes it
        num_keys: Expected number of KEYS, or None if variadic
        num_args: Expected number of ARGV, or None if variadic
    """
    name: str
    source: str
    sha: str
    num_keys: Optional[int] = None
    num_args: Optional[int] = None


class ScriptRegistry:
    """
    Thread-safe name -> script mapping.

    Example:
        registry = ScriptRegistry()
        registry.register("add", "return ARGV[1] + ARGV[2]", num_keys=0, num_args=2)
        registry.get("add").sha
    """

    def __init__(self):
        self._scripts: Dict[str, RegisteredScript] = {}
        self._lock = threading.RLock()

    def register(
        self,
        name: str,
        source: str,
        num_keys: Optional[int] = None,
        num_args: Optional[int] = None,
    ) -> RegisteredScript:
        """
        Register (or replace) a script under ``name``.

        Raises:
            InvalidOperationError: On an empty name or source, or a negative arity
        """
        if not name:
            raise InvalidOperationError("script name must not be empty")
        if not source or not source.strip():
            raise InvalidOperationError(f"script source must not be empty: {name}")
        for label, arity in (("num_keys", num_keys), ("num_args", num_args)):
            if arity is not None and arity < 0:
                raise InvalidOperationError(f"{label} must be >= 0 for script {name}")

        script = RegisteredScript(
            name=name,
            source=source,
            sha=hashlib.sha1(source.encode("utf-8")).hexdigest(),
            num_keys=num_keys,
            num_args=num_args,
        )
        with self._lock:
            self._scripts[name] = script
        return script

    def get(self, name: str) -> Optional[RegisteredScript]:
        with self._lock:
            return self._scripts.get(name)

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._scripts)

    def check_arity(
        self,
        script: RegisteredScript,
        keys: Sequence[str],
        args: Sequence[object],
    ) -> None:
        """
        Raises:
            InvalidOperationError: If keys/args do not match the registered arity
        """
        if script.num_keys is not None and len(keys) != script.num_keys:
            raise InvalidOperationError(
                f"script {script.name} expects {script.num_keys} key(s), got {len(keys)}"
            )
        if script.num_args is not None and len(args) != script.num_args:
            raise InvalidOperationError(
                f"script {script.name} expects {script.num_args} arg(s), got {len(args)}"
            )

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._scripts

    def __len__(self) -> int:
        with self._lock:
            return len(self._scripts)


def register_builtin_scripts(registry: ScriptRegistry) -> None:
    """Register every script the atomic primitives depend on."""
    registry.register(SCRIPT_DECR, DECR_SCRIPT, num_keys=1, num_args=1)
    registry.register(SCRIPT_INCR, INCR_SCRIPT, num_keys=1, num_args=2)
    registry.register(SCRIPT_HDECR, HDECR_SCRIPT, num_keys=1, num_args=2)
    registry.register(SCRIPT_HINCR, HINCR_SCRIPT, num_keys=1, num_args=3)
    registry.register(
        SCRIPT_INCR_WITH_LIMIT_AND_EXPIRE,
        INCR_WITH_LIMIT_AND_EXPIRE_SCRIPT,
        num_keys=1,
        num_args=3,
    )
    registry.register(SCRIPT_CHECK_EXPIRE, CHECK_KEY_EXPIRE_SCRIPT, num_keys=1, num_args=1)
    registry.register(
        SCRIPT_CHECK_VALUE_AND_DEL, CHECK_VALUE_AND_DEL_SCRIPT, num_keys=1, num_args=1
    )
    registry.register(SCRIPT_LOCK, LOCK_SCRIPT, num_keys=1, num_args=2)
    registry.register(SCRIPT_UNLOCK, UNLOCK_SCRIPT, num_keys=1, num_args=1)
    registry.register(SCRIPT_RENEW_LOCK, RENEW_LOCK_SCRIPT, num_keys=1, num_args=2)
    # multi-key scripts take a variable number of keys
    registry.register(SCRIPT_MULTI_LOCK, MULTI_LOCK_SCRIPT, num_args=2)
    registry.register(SCRIPT_MULTI_UNLOCK, MULTI_UNLOCK_SCRIPT, num_args=1)


def register_scripts(registry: ScriptRegistry, scripts: Mapping[str, str]) -> None:
    for name, source in scripts.items():
        registry.register(name, source)
