from __future__ import annotations

import asyncio
import threading
import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from loguru import logger

from yfkit.core.exceptions import FetchCancelled
from yfkit.core.models import CacheEntry, CacheMode, RequestKey, TtlClass

Loader = Callable[[], Awaitable[Any]]


def _consume_exception(fut: "asyncio.Future[Any]") -> None:
    # Waiter-less failures must not trigger "exception was never retrieved".
    if not fut.cancelled():
        fut.exception()


class RequestCache:
    """Keyed memoization with TTL staleness and one in-flight fetch per key.

    The entry and in-flight maps are only touched inside ``self._lock`` sections
    that never await, so a reader sees either the old entry or the new one.
    """

    def __init__(
        self,
        ttl_by_class: Optional[Mapping[TtlClass, float]] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = dict(ttl_by_class or {TtlClass.DEFAULT: 60.0})
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[RequestKey, CacheEntry] = {}
        self._inflight: Dict[RequestKey, asyncio.Future] = {}
        self.hits = 0
        self.misses = 0

    def ttl_for(self, ttl_class: TtlClass) -> float:
        return float(self._ttl.get(ttl_class, self._ttl.get(TtlClass.DEFAULT, 0.0)))

    def _is_fresh(self, entry: CacheEntry) -> bool:
        ttl = self.ttl_for(entry.ttl_class)
        return ttl > 0 and (self._clock() - entry.fetched_at) <= ttl

    def peek(self, key: RequestKey) -> Optional[Any]:
        """Fresh cached value for ``key`` or ``None``; never fetches."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._is_fresh(entry):
                return entry.value
        return None

    def put(self, key: RequestKey, value: Any, ttl_class: TtlClass = TtlClass.DEFAULT) -> None:
        if self.ttl_for(ttl_class) <= 0:
            return
        entry = CacheEntry(value=value, fetched_at=self._clock(), ttl_class=ttl_class)
        with self._lock:
            self._entries[key] = entry

    def invalidate(self, key: RequestKey) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def inflight(self, key: RequestKey) -> bool:
        with self._lock:
            return key in self._inflight

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    async def get_or_fetch(
        self,
        key: RequestKey,
        loader: Loader,
        *,
        mode: CacheMode = CacheMode.USE,
        ttl_class: TtlClass = TtlClass.DEFAULT,
    ) -> Any:
        loop = asyncio.get_running_loop()
        with self._lock:
            if mode is CacheMode.USE:
                entry = self._entries.get(key)
                if entry is not None and self._is_fresh(entry):
                    self.hits += 1
                    return entry.value
            elif mode is CacheMode.REFRESH:
                self._entries.pop(key, None)
            self.misses += 1
            shared = self._inflight.get(key)
            if shared is None:
                shared = loop.create_future()
                shared.add_done_callback(_consume_exception)
                self._inflight[key] = shared
                leader = True
            else:
                leader = False

        if not leader:
            logger.debug("joining in-flight fetch endpoint={} symbols={}", key.endpoint, key.symbols)
            return await asyncio.shield(shared)

        try:
            value = await loader()
        except asyncio.CancelledError:
            with self._lock:
                self._inflight.pop(key, None)
            if not shared.done():
                shared.set_exception(FetchCancelled("leading fetch was cancelled"))
            raise
        except BaseException as exc:
            with self._lock:
                self._inflight.pop(key, None)
            if not shared.done():
                shared.set_exception(exc)
            raise

        # zero-TTL classes are never served, so they are never stored
        store = self.ttl_for(ttl_class) > 0
        entry = CacheEntry(value=value, fetched_at=self._clock(), ttl_class=ttl_class)
        with self._lock:
            if store:
                self._entries[key] = entry
            self._inflight.pop(key, None)
        if not shared.done():
            shared.set_result(value)
        return value


__all__ = ["RequestCache"]
