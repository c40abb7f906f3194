"""Observable value holder used for session and sync state."""

import asyncio
import logging
from typing import AsyncIterator, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StateFlow(Generic[T]):
    """
    Holds the latest value and pushes every change to its observers.

    Observers see updates in the order they were set. A new observer receives
    the current value first. Setting a value equal to the current one is a
    no-op.
    """

    def __init__(self, initial: T):
        self._value = initial
        self._listeners: list[Callable[[T], None]] = []
        self._queues: set[asyncio.Queue] = set()

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        if value == self._value:
            return
        self._value = value
        for queue in list(self._queues):
            queue.put_nowait(value)
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception as e:
                logger.error(f"State listener {listener!r} failed: {e}")

    def listen(self, listener: Callable[[T], None]) -> Callable[[], None]:
        """Register a synchronous listener; returns a function that removes it."""
        self._listeners.append(listener)
        listener(self._value)

        def _remove():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    async def subscribe(self) -> AsyncIterator[T]:
        """Iterate over the current value and every later one."""
        queue: asyncio.Queue = asyncio.Queue()
        queue.put_nowait(self._value)
        self._queues.add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._queues.discard(queue)
