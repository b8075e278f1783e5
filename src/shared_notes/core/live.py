"""Observable values that always hold the latest state.

A ``LiveValue`` is the consumer-facing handle of everything in SharedNotes
that changes over time: a stored note, the list of notes, the remote
polling stream and the merged synced view.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Observer = Callable[[T], None]

_CLOSED = object()


class LiveValue(Generic[T]):
    """
    Holder of a current value with change notification.

    Observers are plain callables run synchronously on every ``post``.
    Async consumers use ``stream()`` or ``wait_for()``.

    Usage:
        live = await store.observe("groceries")
        unsubscribe = live.observe(lambda note: print(note))

        async for note in live.stream():
            ...
    """

    def __init__(self, name: str = "") -> None:
        self._name = name
        self._value: T | None = None
        self._has_value = False
        self._version = 0
        self._observers: list[Observer[T]] = []
        self._queues: set[asyncio.Queue[object]] = set()
        self._close_hooks: list[Callable[[], None]] = []
        self._closed = False

    def __repr__(self) -> str:
        return f"LiveValue({self._name!r}, version={self._version})"

    @property
    def value(self) -> T | None:
        """The latest posted value, or None before the first post."""
        return self._value

    @property
    def has_value(self) -> bool:
        return self._has_value

    @property
    def version(self) -> int:
        """Number of values posted so far."""
        return self._version

    @property
    def closed(self) -> bool:
        return self._closed

    def post(self, value: T) -> None:
        """Publish a new value to every observer and stream."""
        if self._closed:
            logger.debug("Dropping post to closed %r", self)
            return

        self._value = value
        self._has_value = True
        self._version += 1

        for observer in list(self._observers):
            try:
                observer(value)
            except Exception:
                logger.warning("Observer of %r failed", self, exc_info=True)

        for queue in self._queues:
            queue.put_nowait(value)

    def observe(self, observer: Observer[T]) -> Callable[[], None]:
        """Register an observer and return a function that removes it.

        The observer is called immediately with the current value, if any.
        """
        self._observers.append(observer)
        if self._has_value:
            observer(self._value)  # type: ignore[arg-type]

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    async def stream(self) -> AsyncIterator[T]:
        """Iterate over the current value and every later one until closed."""
        queue: asyncio.Queue[object] = asyncio.Queue()
        if self._has_value:
            queue.put_nowait(self._value)
        if self._closed:
            queue.put_nowait(_CLOSED)
        self._queues.add(queue)
        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                yield item  # type: ignore[misc]
        finally:
            self._queues.discard(queue)

    async def wait_for(
        self,
        predicate: Callable[[T], bool],
        timeout: float | None = None,
    ) -> T:
        """Wait until a value matching ``predicate`` is posted.

        The current value counts. Raises ``TimeoutError`` on timeout and
        ``LookupError`` if the value is closed first.
        """

        async def _wait() -> T:
            async with aclosing(self.stream()) as values:
                async for value in values:
                    if predicate(value):
                        return value
            raise LookupError(f"{self!r} closed before a matching value")

        return await asyncio.wait_for(_wait(), timeout)

    def add_close_hook(self, hook: Callable[[], None]) -> None:
        self._close_hooks.append(hook)

    def close(self) -> None:
        """Stop delivering values. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._observers.clear()
        for queue in self._queues:
            queue.put_nowait(_CLOSED)
        hooks, self._close_hooks = self._close_hooks, []
        for hook in hooks:
            try:
                hook()
            except Exception:
                logger.warning("Close hook of %r failed", self, exc_info=True)
