"""Cancellation tokens and the registry of in-flight generations."""

from __future__ import annotations

import asyncio
import contextlib
import threading
from typing import AsyncIterable, AsyncIterator, Callable, Dict, List, Optional, TypeVar

T = TypeVar("T")
CancelFn = Callable[[], None]


class CancelToken:
    """Cooperative cancellation signal for a single generation."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, source: AsyncIterable[T]) -> AsyncIterator[T]:
        """Yield from ``source`` until it is exhausted or the token is cancelled.

        Each pending read is raced against the token, so a cancel interrupts a
        read that is blocked on the transport instead of waiting for the next
        item to arrive.
        """

        iterator = source.__aiter__()
        while not self.cancelled:
            read = asyncio.ensure_future(iterator.__anext__())
            waiter = asyncio.ensure_future(self._event.wait())
            try:
                done, _ = await asyncio.wait({read, waiter}, return_when=asyncio.FIRST_COMPLETED)
            except BaseException:
                read.cancel()
                raise
            finally:
                waiter.cancel()
            if read not in done:
                read.cancel()
                with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration):
                    await read
                return
            try:
                item = read.result()
            except StopAsyncIteration:
                return
            yield item


class AbortRegistry:
    """Maps generation ids to their cancel callables.

    Registering an id that is already present replaces the previous handle
    without warning; the earlier generation keeps running but can no longer be
    cancelled by id.
    """

    def __init__(self) -> None:
        self._handles: Dict[str, CancelFn] = {}
        self._lock = threading.Lock()

    def register(self, generation_id: str, cancel_fn: CancelFn) -> None:
        with self._lock:
            self._handles[generation_id] = cancel_fn

    def cancel(self, generation_id: str) -> bool:
        with self._lock:
            cancel_fn = self._handles.get(generation_id)
        if cancel_fn is None:
            return False
        cancel_fn()
        return True

    def clear(self, generation_id: str, cancel_fn: Optional[CancelFn] = None) -> None:
        """Remove the entry for ``generation_id``.

        When ``cancel_fn`` is given the entry is only removed if it is still
        that handle, so a finished generation never drops a newer one's entry.
        """

        with self._lock:
            current = self._handles.get(generation_id)
            if current is None:
                return
            if cancel_fn is not None and current is not cancel_fn:
                return
            del self._handles[generation_id]

    def active_ids(self) -> List[str]:
        with self._lock:
            return list(self._handles)

    def __contains__(self, generation_id: object) -> bool:
        with self._lock:
            return generation_id in self._handles

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)
