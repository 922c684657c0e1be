"""
Uniform result and error model.

Every store-bound operation returns a ``CacheResult``: either a value with
``ErrorCode.OK`` or an error code drawn from the closed ``ErrorCode``
enumeration together with the underlying cause.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorCode(IntEnum):
    """Closed taxonomy of operation outcomes."""
    OK = 0
    INTERRUPTED = 1
    TIMEOUT = 2
    BREAK = 3
    REDIS_INNER_ERROR = 4
    CONNECTION_FAILED = 5
    KEY_NOT_FOUND = 6
    INVALID_CONFIG = 7
    INVALID_OPERATION = 8
    CLUSTER_NOT_READY = 9
    HEALTH_CHECK_FAILED = 10

    def __str__(self) -> str:
        return self.name


class RedisManagerError(Exception):
    """
    Base error raised or carried by the manager.

    Attributes:
        code: ErrorCode classifying the failure
        message: Human readable description
        cause: Underlying exception, if any
    """

    code: ErrorCode = ErrorCode.REDIS_INNER_ERROR
    default_message = "operation failed"

    def __init__(
        self,
        message: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        self.message = message or self.default_message
        self.cause = cause
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.cause is not None:
            return f"redis error [{self.code.name}]: {self.message}, caused by: {self.cause}"
        return f"redis error [{self.code.name}]: {self.message}"


class ConnectionFailedError(RedisManagerError):
    code = ErrorCode.CONNECTION_FAILED
    default_message = "connection failed"


class OperationTimeoutError(RedisManagerError):
    code = ErrorCode.TIMEOUT
    default_message = "operation timeout"


class OperationFailedError(RedisManagerError):
    code = ErrorCode.REDIS_INNER_ERROR
    default_message = "operation failed"


class UnexpectedReplyError(OperationFailedError):
    """The store replied with a shape the caller's contract does not allow."""
    default_message = "unexpected reply"


class KeyNotFoundError(RedisManagerError):
    code = ErrorCode.KEY_NOT_FOUND
    default_message = "key not found"


class InvalidConfigError(RedisManagerError):
    code = ErrorCode.INVALID_CONFIG
    default_message = "invalid config"


class InvalidOperationError(RedisManagerError):
    code = ErrorCode.INVALID_OPERATION
    default_message = "invalid operation"


class ClusterNotReadyError(RedisManagerError):
    code = ErrorCode.CLUSTER_NOT_READY
    default_message = "cluster not ready"


class HealthCheckFailedError(RedisManagerError):
    code = ErrorCode.HEALTH_CHECK_FAILED
    default_message = "health check failed"


@dataclass
class CacheResult(Generic[T]):
    """
    Outcome of a single operation.

    Exactly one of ``value`` / ``error`` is meaningful: ``value`` when
    ``code`` is ``ErrorCode.OK``, ``error`` otherwise.
    """
    value: Optional[T] = None
    code: ErrorCode = ErrorCode.OK
    error: Optional[BaseException] = None

    @classmethod
    def success(cls, value: T) -> "CacheResult[T]":
        return cls(value=value, code=ErrorCode.OK)

    @classmethod
    def failure(
        cls,
        code: ErrorCode,
        error: Optional[BaseException] = None,
    ) -> "CacheResult[Any]":
        if code == ErrorCode.OK:
            raise ValueError("failure() requires a non-OK error code")
        return cls(value=None, code=code, error=error)

    @property
    def ok(self) -> bool:
        return self.code == ErrorCode.OK

    @property
    def is_key_not_found(self) -> bool:
        return self.code == ErrorCode.KEY_NOT_FOUND

    def unwrap(self) -> T:
        """Return the value, or raise the carried error."""
        if self.ok:
            return self.value
        if isinstance(self.error, BaseException):
            raise self.error
        raise RedisManagerError(f"operation failed with {self.code.name}")

    def __str__(self) -> str:
        return f"CacheResult{{val={self.value!r}, errCode={self.code.name}}}"


def classify_error(exc: BaseException) -> ErrorCode:
    """
    Classify a transport exception once, at the boundary.

    Errors the manager raised itself keep their own code; anything coming
    out of redis-py is an internal store error. Nil replies are not
    exceptions in redis-py and are mapped to KEY_NOT_FOUND by the caller.
    """
    if isinstance(exc, RedisManagerError):
        return exc.code
    return ErrorCode.REDIS_INNER_ERROR
