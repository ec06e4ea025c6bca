"""Cancellable live views over store state.

A :class:`Subscription` is the consumer half of a listener or polling loop.
Producers call :meth:`Subscription.push` / :meth:`Subscription.fail`;
consumers iterate with ``async for`` and call :meth:`Subscription.close`
(or leave an ``async with`` block) to detach. Once closed, no further
value is delivered and the producer's release hook runs exactly once.

Live views pass ``buffer_size=LATEST_ONLY``: a consumer that falls behind sees
the most recent state instead of an ever-growing backlog.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_VALUE = "value"
_ERROR = "error"
_END = "end"

LATEST_ONLY = 1


class Subscription(Generic[T]):
    """Async iterator of successive states, terminated by close() or an error."""

    def __init__(
        self,
        name: str = "",
        *,
        transform: Callable[[Any], T] | None = None,
        on_close: Callable[[], None] | None = None,
        buffer_size: int | None = None,
    ) -> None:
        if buffer_size is not None and buffer_size < 1:
            raise ValueError("buffer_size must be >= 1")
        self.name = name
        self._buffer_size = buffer_size
        self._transform = transform
        self._on_close = on_close
        self._queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()
        self._closed = False
        self._failed = False
        self._released = False

    @property
    def closed(self) -> bool:
        return self._closed

    def set_release_hook(self, on_close: Callable[[], None]) -> None:
        """Attach the producer's teardown once the listener exists."""
        self._on_close = on_close
        if self._closed:
            self._release()

    # ── Producer side ─────────────────────────────────────────────

    def push(self, value: Any) -> None:
        """Deliver a new state. Ignored once the subscription is closed."""
        if self._closed or self._failed:
            return
        if self._transform is not None:
            try:
                value = self._transform(value)
            except Exception as exc:
                logger.warning("Subscription %s: failed to decode update: %s", self.name, exc)
                self.fail(exc)
                return
        if self._buffer_size is not None:
            # Oldest states are dropped first.
            while self._queue.qsize() >= self._buffer_size:
                self._queue.get_nowait()
        self._queue.put_nowait((_VALUE, value))

    def fail(self, exc: BaseException) -> None:
        """Deliver a terminal error and detach the producer."""
        if self._closed or self._failed:
            return
        self._failed = True
        self._queue.put_nowait((_ERROR, exc))
        self._release()

    # ── Consumer side ─────────────────────────────────────────────

    def close(self) -> None:
        """Stop delivery, drop anything buffered, and release the producer."""
        if self._closed:
            return
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait((_END, None))
        self._release()

    async def get(self, timeout: float | None = None) -> T:
        """Wait for the next state (``asyncio.TimeoutError`` after *timeout*)."""
        if timeout is None:
            return await self.__anext__()
        return await asyncio.wait_for(self.__anext__(), timeout)

    def __aiter__(self) -> Subscription[T]:
        return self

    async def __anext__(self) -> T:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        kind, payload = await self._queue.get()
        if kind == _END:
            raise StopAsyncIteration
        if kind == _ERROR:
            self._closed = True
            raise payload
        return payload

    async def __aenter__(self) -> Subscription[T]:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    def _release(self) -> None:
        if self._released:
            return
        self._released = True
        if self._on_close is not None:
            try:
                self._on_close()
            except Exception:
                logger.exception("Subscription %s: release hook failed", self.name)

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"Subscription({self.name!r}, {state})"
