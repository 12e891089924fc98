from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable
from typing import Generic, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


def _retrieve_exception(fut: asyncio.Future) -> None:
    # Waiters may all be cancelled; mark the failure as retrieved.
    if not fut.cancelled() and fut.exception() is not None:
        logging.debug(f"memo: computation failed: {fut.exception()!r}")


class AsyncMemo(Generic[K, V]):
    """
    Compute-once memo for coroutine results.

    The first caller for a key starts the computation and stores its future; every
    concurrent caller for the same key awaits that same future. Completed values are
    write-once. Failures are handed to every waiter but are not memoized, so a later
    call may try again.

    Completed values live in a plain dict, so they stay readable (``peek``) from any
    event loop once the loop that computed them is gone.
    """

    def __init__(self, label: str = "memo") -> None:
        self._label = label
        self._done: dict[K, V] = {}
        self._pending: dict[K, asyncio.Future[V]] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._done

    def __len__(self) -> int:
        return len(self._done)

    def peek(self, key: K) -> V | None:
        return self._done.get(key)

    def put_if_absent(self, key: K, value: V) -> V:
        """
        Store ``value`` unless a value is already stored; return the stored value.
        """
        return self._done.setdefault(key, value)

    def in_flight(self, key: K) -> bool:
        return key in self._pending

    async def get_or_compute(self, key: K, compute: Callable[[], Awaitable[V]]) -> V:
        hit = self._done.get(key)
        if hit is not None:
            logging.debug(f"{self._label}: hit {key!r}")
            return hit

        fut = self._pending.get(key)
        if fut is None:
            logging.debug(f"{self._label}: miss {key!r}")
            fut = asyncio.ensure_future(self._run(key, compute))
            fut.add_done_callback(_retrieve_exception)
            self._pending[key] = fut
        else:
            logging.debug(f"{self._label}: joining in-flight {key!r}")

        # A cancelled waiter must not cancel the shared computation.
        return await asyncio.shield(fut)

    async def _run(self, key: K, compute: Callable[[], Awaitable[V]]) -> V:
        try:
            value = await compute()
        finally:
            self._pending.pop(key, None)
        return self._done.setdefault(key, value)

    def clear(self) -> None:
        self._done.clear()
        self._pending.clear()
