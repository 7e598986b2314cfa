"""
Conduit - Async Utilities

Small asyncio building blocks used by the lifecycle:
- ReadySignal: single-assignment future for "startup finished"
- maybe_await: accept hooks that return either a value or an awaitable
- run_barrier: start calls in order, then wait for all of them
- schedule: fire-and-forget an awaitable with error logging
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable, Generic, Iterable, List, Optional, TypeVar

from core.types import MaybeAwaitable
from observability.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


class ReadySignal(Generic[T]):
    """
    Future that is resolved or rejected exactly once.

    The underlying future is created lazily on the running loop so a signal
    can be constructed outside of any event loop. Later ``resolve`` or
    ``reject`` calls are ignored.
    """

    def __init__(self) -> None:
        self._future: Optional[asyncio.Future] = None

    def _ensure_future(self) -> asyncio.Future:
        if self._future is None:
            self._future = asyncio.get_running_loop().create_future()
        return self._future

    @property
    def done(self) -> bool:
        return self._future is not None and self._future.done()

    @property
    def failed(self) -> bool:
        return self.done and self._future.exception() is not None

    def resolve(self, value: T) -> bool:
        """Resolve the signal. Returns False if it was already settled."""
        future = self._ensure_future()
        if future.done():
            return False
        future.set_result(value)
        return True

    def reject(self, error: BaseException) -> bool:
        """Reject the signal. Returns False if it was already settled."""
        future = self._ensure_future()
        if future.done():
            return False
        future.set_exception(error)
        # Mark the exception as retrieved; callers may never await the signal.
        future.exception()
        return True

    def result(self) -> T:
        if not self.done:
            raise asyncio.InvalidStateError("Ready signal is not settled")
        return self._future.result()

    async def wait(self) -> T:
        """Wait for the signal and return its value or raise its error."""
        return await asyncio.shield(self._ensure_future())


async def maybe_await(value: MaybeAwaitable[T]) -> T:
    """Await ``value`` if it is awaitable, otherwise return it unchanged."""
    if inspect.isawaitable(value):
        return await value
    return value


async def run_barrier(
    items: Iterable[T],
    call: Callable[[T], Any],
) -> List[Any]:
    """
    Invoke ``call`` for every item in order, then wait for all results.

    Synchronous work inside ``call`` runs in item order, awaitables are
    gathered so each one starts no later than the ones after it. The first
    exception propagates after all calls were started.
    """
    started: List[Any] = []
    try:
        for item in items:
            started.append(call(item))
    except BaseException:
        for value in started:
            if inspect.iscoroutine(value):
                value.close()
        raise
    return list(await asyncio.gather(*(maybe_await(value) for value in started)))


def schedule(awaitable: Any, description: str) -> Optional[asyncio.Task]:
    """
    Run ``awaitable`` in the background and log it if it fails.

    Plain values are ignored, which lets callers pass through the result of a
    collaborator method that may be either sync or async.
    """
    if not inspect.isawaitable(awaitable):
        return None

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        logger.warning("Background call dropped, no running event loop", call=description)
        return None

    task = asyncio.ensure_future(awaitable, loop=loop)

    def _report(done: asyncio.Future) -> None:
        if done.cancelled():
            return
        error = done.exception()
        if error is not None:
            logger.warning("Background call failed", call=description, error=str(error))

    task.add_done_callback(_report)
    return task
