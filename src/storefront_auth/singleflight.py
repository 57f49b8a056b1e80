"""Collapse concurrent identical async operations into one."""

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, Dict, Hashable

logger = logging.getLogger(__name__)


class _Call:
    __slots__ = ("task", "waiters")

    def __init__(self, task: "asyncio.Task[Any]"):
        self.task = task
        self.waiters = 0


class SingleFlight:
    """Run at most one in-flight operation per key.

    Callers arriving while an operation for the same key is running await
    the same task and receive the same result or exception. The shared task
    is cancelled once every waiter has been cancelled, so an abandoned
    request never leaves a dangling network call behind.
    """

    def __init__(self):
        self._calls: Dict[Hashable, _Call] = {}

    def in_flight(self, key: Hashable) -> bool:
        return key in self._calls

    async def do(self, key: Hashable, func: Callable[[], Awaitable[Any]]) -> Any:
        call = self._calls.get(key)
        if call is None:
            call = _Call(asyncio.ensure_future(func()))
            self._calls[key] = call
            call.task.add_done_callback(functools.partial(self._forget, key, call))
        else:
            logger.debug(f"Joining in-flight operation for {key!r}")

        call.waiters += 1
        try:
            return await asyncio.shield(call.task)
        finally:
            call.waiters -= 1
            if call.waiters == 0 and not call.task.done():
                call.task.cancel()

    def _forget(self, key: Hashable, call: _Call, _task: "asyncio.Task[Any]") -> None:
        if self._calls.get(key) is call:
            del self._calls[key]
