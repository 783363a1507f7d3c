"""Async in-memory TTL cache with in-flight fetch coalescing.

Notes:
- In-memory only, async-safe via asyncio.Lock
- TTL is chosen per call and stored with the entry
- Only successful fetches create entries; a failed refresh leaves any
  existing entry as it was
- Optional bound on entries: expired entries go first, then FIFO by store order
- TTL calculations use a monotonic clock (time.monotonic)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from .models import CacheStats

V = TypeVar("V")

NowFn = Callable[[], float]

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Entry(Generic[V]):
    value: V
    stored_at: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now - self.stored_at < self.ttl


def _consume_exception(task: asyncio.Task[Any]) -> None:
    # Waiters may all have been cancelled; mark the error as retrieved so the
    # loop does not report "Task exception was never retrieved".
    if not task.cancelled():
        task.exception()


class TTLCache(Generic[V]):
    """Cache the results of async fetches per key for a bounded time.

    - ``get_or_fetch`` returns a fresh cached value, joins a fetch already in
      flight for the key, or starts exactly one new fetch.
    - All waiters of one fetch see the same value or the same error.
    - ``invalidate`` drops entries but never cancels an in-flight fetch; such
      a fetch still stores its result when it completes.
    """

    def __init__(
        self,
        *,
        max_entries: Optional[int] = None,
        serve_stale_on_error: bool = False,
        now_fn: NowFn | None = None,
    ) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be >= 1 when provided")

        self._max_entries = max_entries
        self._serve_stale_on_error = serve_stale_on_error
        self._now: NowFn = now_fn or time.monotonic
        # Insertion order doubles as FIFO eviction order
        self._data: "OrderedDict[str, _Entry[V]]" = OrderedDict()
        self._pending: dict[str, asyncio.Task[V]] = {}
        self._lock = asyncio.Lock()

    async def get_or_fetch(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[V]],
        ttl_seconds: float,
    ) -> V:
        """Return the value for ``key``, fetching it at most once concurrently.

        A cached entry is fresh while ``now - stored_at < ttl`` where ``ttl``
        is the one it was stored with.
        """

        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")

        async with self._lock:
            task = self._pending.get(key)
            if task is not None and not task.done():
                _logger.debug("joining in-flight fetch", extra={"op": "get_or_fetch", "key": key})
            else:
                entry = self._data.get(key)
                if entry is not None and entry.is_fresh(self._now()):
                    return entry.value
                task = asyncio.create_task(self._fetch(key, fetcher, float(ttl_seconds)))
                task.add_done_callback(_consume_exception)
                self._pending[key] = task

        return await asyncio.shield(task)

    async def invalidate(self, key: Optional[str] = None) -> None:
        """Remove the entry for ``key`` (all entries when no key is given)."""
        if key is None:
            await self.invalidate_all()
            return
        async with self._lock:
            self._data.pop(key, None)

    async def invalidate_all(self) -> None:
        async with self._lock:
            self._data.clear()

    def has_pending(self, key: str) -> bool:
        task = self._pending.get(key)
        return bool(task is not None and not task.done())

    def stats(self) -> CacheStats:
        """Diagnostic snapshot; cached_keys may include expired entries."""
        return CacheStats(
            cache_size=len(self._data),
            pending_count=sum(1 for t in self._pending.values() if not t.done()),
            cached_keys=list(self._data.keys()),
        )

    async def _fetch(self, key: str, fetcher: Callable[[], Awaitable[V]], ttl: float) -> V:
        me = asyncio.current_task()
        try:
            try:
                value = await fetcher()
            except Exception:
                stale = self._data.get(key)
                if not self._serve_stale_on_error or stale is None:
                    raise
                _logger.warning(
                    "refresh failed; serving stale value",
                    extra={"op": "get_or_fetch", "key": key},
                    exc_info=True,
                )
                return stale.value

            async with self._lock:
                self._store_unlocked(key, value, ttl)
            return value
        finally:
            # Runs before the task's outcome is published to waiters.
            if self._pending.get(key) is me:
                del self._pending[key]

    # --- internal helpers (require caller to hold lock) ---
    def _store_unlocked(self, key: str, value: V, ttl: float) -> None:
        self._data.pop(key, None)
        self._data[key] = _Entry(value=value, stored_at=self._now(), ttl=ttl)
        self._evict_if_needed_unlocked()

    def _evict_if_needed_unlocked(self) -> None:
        if self._max_entries is None or len(self._data) <= self._max_entries:
            return
        now = self._now()
        for k in [k for k, e in self._data.items() if not e.is_fresh(now)]:
            del self._data[k]
        while len(self._data) > self._max_entries:
            oldest, _ = self._data.popitem(last=False)
            _logger.debug("evicting cache entry", extra={"op": "evict", "key": oldest})


__all__ = ["TTLCache"]
