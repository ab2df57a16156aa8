"""
Single-Flight Coordination

At most one in-flight computation per key. Callers that arrive while a
computation for their key is running wait on the same task and share its
result (or its exception).

The shared task is shielded from callers: a caller being cancelled (for
example a client disconnecting) never cancels the work other callers, or
the cache, are waiting on.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Generic, Hashable, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """
    Per-key deduplication of concurrent async work.

    Usage:
        fetches = SingleFlight(name="fetch")
        result = await fetches.run(("origin.example.com", "a.jpg"), lambda: fetch(...))
    """

    def __init__(self, name: str = "single-flight"):
        self.name = name
        self._calls: Dict[Hashable, "asyncio.Task[T]"] = {}

    def start(self, key: Hashable, func: Callable[[], Awaitable[T]]) -> Tuple["asyncio.Task[T]", bool]:
        """
        Join the in-flight task for key, or start one.

        Args:
            key: Deduplication key
            func: Zero-arg factory for the coroutine; only called by the leader

        Returns:
            (task, leader) where leader is True if this call started the task.
        """
        task = self._calls.get(key)
        if task is not None:
            logger.debug(f"[SingleFlight:{self.name}] Joining in-flight {key}")
            return task, False

        task = asyncio.ensure_future(func())
        self._calls[key] = task
        task.add_done_callback(lambda t: self._finish(key, t))
        return task, True

    async def run(self, key: Hashable, func: Callable[[], Awaitable[T]]) -> T:
        """Run func once per key across concurrent callers and return its result."""
        task, _ = self.start(key, func)
        return await asyncio.shield(task)

    def in_flight(self, key: Hashable) -> bool:
        return key in self._calls

    def __len__(self) -> int:
        return len(self._calls)

    def _finish(self, key: Hashable, task: "asyncio.Task[T]") -> None:
        if self._calls.get(key) is task:
            del self._calls[key]
        if task.cancelled():
            return
        # Mark the exception retrieved; every waiter re-raises it on its own.
        error = task.exception()
        if error is not None:
            logger.warning(f"[SingleFlight:{self.name}] {key} failed: {error}")
