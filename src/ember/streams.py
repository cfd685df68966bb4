"""
streams.py — Task-backed single-consumer event streams

An EventStream wraps an async generator factory. On the first pull (or an
explicit start()) the generator is driven by its own asyncio task and its
items are handed to the consumer through an unbounded queue. This keeps
the producer's suspension points (socket receive, HTTP body read) in a
task that can be cancelled from anywhere, including from a task other than
the consumer.

Termination:
  - producer returns          → consumer sees StopAsyncIteration
  - producer raises           → consumer sees that exception once, then
                                StopAsyncIteration
  - cancel() / aclose()       → producer task is cancelled; the consumer's
                                next pull raises the stream's cancellation
                                error once, then StopAsyncIteration. Items
                                still queued at cancel time are discarded.

Usage:
    stream = EventStream(lambda: produce(), cancel_error=ChatCancelledError)
    async with stream:
        async for item in stream:
            ...
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Callable, Generic, Optional, TypeVar

from ember.exceptions import StreamCancelledError
from ember.observability.logger import get_logger

log = get_logger(__name__)

T = TypeVar("T")

_ITEM = "item"
_ERROR = "error"
_END = "end"
_CANCEL = "cancel"


class EventStream(Generic[T]):
    """Lazy, single-consumption, cancellable async sequence."""

    def __init__(
        self,
        source: Callable[[], AsyncIterator[T]],
        *,
        cancel_error: Callable[[], BaseException] = StreamCancelledError,
        name: str = "stream",
        on_close: Optional[Callable[["EventStream[T]"], None]] = None,
    ) -> None:
        self._source = source
        self._cancel_error = cancel_error
        self._name = name
        self._on_close = on_close
        self._queue: asyncio.Queue[tuple[str, object]] = asyncio.Queue()
        self._task: Optional[asyncio.Task[None]] = None
        self._closed = asyncio.Event()
        self._cancelled = False
        self._finished = False

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    @property
    def name(self) -> str:
        return self._name

    @property
    def started(self) -> bool:
        return self._task is not None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def done(self) -> bool:
        """True once no further items can be delivered to the consumer."""
        return self._finished or self._cancelled or self._closed.is_set()

    def start(self) -> "EventStream[T]":
        """Launch the producer task. Idempotent; a no-op after cancel()."""
        if self._task is None and not self._cancelled:
            self._task = asyncio.get_running_loop().create_task(
                self._run(), name=f"ember.{self._name}"
            )
        return self

    def cancel(self) -> None:
        """Cancel cooperatively. Safe to call from any task, any number of times."""
        if self._cancelled or self._finished:
            return
        self._cancelled = True
        log.debug("stream.cancelled", stream=self._name)
        if self._task is None:
            self._mark_closed()
        elif not self._task.done():
            self._task.cancel()
        self._queue.put_nowait((_CANCEL, None))

    async def aclose(self) -> None:
        """Cancel and wait for the producer to finish its teardown."""
        self.cancel()
        await self.wait_closed()

    async def wait_closed(self) -> None:
        if self._task is None and not self._closed.is_set():
            return
        await self._closed.wait()

    # ── Producer ──────────────────────────────────────────────────────────────

    async def _run(self) -> None:
        try:
            async for item in self._source():
                self._queue.put_nowait((_ITEM, item))
            self._queue.put_nowait((_END, None))
        except asyncio.CancelledError:
            self._queue.put_nowait((_CANCEL, None))
            raise
        except Exception as exc:
            self._queue.put_nowait((_ERROR, exc))
        finally:
            self._mark_closed()

    def _mark_closed(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        if self._on_close is not None:
            self._on_close(self)

    # ── Consumer ──────────────────────────────────────────────────────────────

    def __aiter__(self) -> "EventStream[T]":
        return self

    async def __anext__(self) -> T:
        if self._finished:
            raise StopAsyncIteration
        if self._cancelled:
            self._finished = True
            raise self._cancel_error()

        self.start()
        kind, payload = await self._queue.get()

        if self._cancelled:
            self._finished = True
            raise self._cancel_error()
        if kind == _ITEM:
            return payload  # type: ignore[return-value]

        self._finished = True
        if kind == _ERROR:
            raise payload  # type: ignore[misc]
        if kind == _CANCEL:
            raise self._cancel_error()
        raise StopAsyncIteration

    async def __aenter__(self) -> "EventStream[T]":
        return self.start()

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
