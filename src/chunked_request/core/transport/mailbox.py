"""Bridge from event notifications to a single awaiting reader."""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Generic, TypeVar

from chunked_request.core.common.exceptions import ProtocolMisuseError

T = TypeVar("T")


class Mailbox(Generic[T]):
    """A side queue plus one waiting-reader slot.

    Producers call :meth:`put`, :meth:`close` or :meth:`fail` from event
    listeners. A notification either wakes the reader currently suspended in
    :meth:`get` or stays buffered until the next call. Items queued before a
    failure are dropped; the failure is what the reader sees.
    """

    def __init__(self) -> None:
        self._queue: deque[T] = deque()
        self._closed = False
        self._failure: BaseException | None = None
        self._waiter: asyncio.Future[None] | None = None

    @property
    def closed(self) -> bool:
        return self._closed or self._failure is not None

    @property
    def pending(self) -> int:
        return len(self._queue)

    def put(self, item: T) -> None:
        if self.closed:
            raise ProtocolMisuseError("Mailbox received data after it was closed")
        self._queue.append(item)
        self._wake()

    def close(self) -> None:
        self._closed = True
        self._wake()

    def fail(self, error: BaseException) -> None:
        if self._failure is None:
            self._failure = error
            self._queue.clear()
        self._wake()

    def _ready(self) -> bool:
        return bool(self._queue) or self.closed

    def _wake(self) -> None:
        if self._waiter is not None and not self._waiter.done():
            self._waiter.set_result(None)

    async def get(self) -> tuple[list[T], bool]:
        """Wait for data or the end of the stream.

        Returns:
            Every queued item, in arrival order, and whether the source ended.
            Queued items are always returned before the end is reported.

        Raises:
            ProtocolMisuseError: If another reader is already waiting.
            BaseException: The error passed to :meth:`fail`.
        """
        if self._waiter is not None:
            raise ProtocolMisuseError("Only one reader may wait on a mailbox")

        if not self._ready():
            self._waiter = asyncio.get_running_loop().create_future()
            try:
                await self._waiter
            finally:
                self._waiter = None

        if self._failure is not None:
            raise self._failure
        if self._queue:
            items = list(self._queue)
            self._queue.clear()
            return items, False
        return [], True
