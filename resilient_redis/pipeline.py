"""
Batched command execution.

``RedisPipeline`` only records commands; nothing touches the network until
``execute()``, which replays them on a fresh redis-py pipeline through the
manager's health gate and statistics.
"""

from typing import TYPE_CHECKING, Any, List, Tuple

from .errors import CacheResult, InvalidOperationError

if TYPE_CHECKING:
    from .manager import RedisManager


class RedisPipeline:
    """
    Command recorder bound to one manager.

    Any redis-py command name can be recorded; calls chain:

        pipe = manager.pipeline()
        pipe.set("a", "1").expire("a", 60).get("a")
        result = await pipe.execute()   # CacheResult([True, True, b"1"])

    Replies are returned raw (bytes), per command, in recording order.
    """

    def __init__(self, manager: "RedisManager", transaction: bool = False):
        self._manager = manager
        self.transaction = transaction
        self._commands: List[Tuple[str, tuple, dict]] = []

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)

        def record(*args: Any, **kwargs: Any) -> "RedisPipeline":
            self._commands.append((name, args, kwargs))
            return self

        return record

    def __len__(self) -> int:
        return len(self._commands)

    def reset(self) -> None:
        self._commands.clear()

    async def execute(self) -> CacheResult[List[Any]]:
        """
        Send every recorded command in one round trip and clear the recorder.

        Nil replies inside the batch are returned as None, not as errors.
        An unknown command name fails the whole batch before anything is sent.
        """
        commands, self._commands = self._commands, []
        if not commands:
            return CacheResult.success([])

        async def call(client: Any) -> List[Any]:
            pipe = client.pipeline(transaction=self.transaction)
            for name, args, kwargs in commands:
                command = getattr(pipe, name, None)
                if not callable(command):
                    raise InvalidOperationError(f"unknown pipeline command: {name}")
                command(*args, **kwargs)
            return await pipe.execute()

        return await self._manager._execute(call, decode=list)
