"""Per-key request coalescing with start throttling.

Notes:
- One shared asyncio.Task per key while an operation is pending; every caller
  for that key awaits it via asyncio.shield, so cancelling a waiter never
  cancels the shared operation.
- The pending entry is registered before any throttle delay. Callers that
  arrive while the start is being delayed join the same operation.
- Throttle timestamps use a monotonic clock (time.monotonic); both the clock
  and the sleep primitive are injectable for tests.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from .cache import _consume_exception
from .models import CoalescerStats

V = TypeVar("V")

NowFn = Callable[[], float]
SleepFn = Callable[[float], Awaitable[Any]]

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _ThrottleRecord:
    started_at: float
    throttle: float

    def window_open(self, now: float) -> bool:
        return now - self.started_at < self.throttle


class RequestCoalescer(Generic[V]):
    """Deduplicate concurrent requests by key and space out their starts.

    - ``throttled_request`` joins the pending operation for a key if there is
      one; otherwise it starts a new one, delayed until at least
      ``throttle_seconds`` have passed since the previous start for that key.
    - The pending entry is removed before waiters observe the outcome.
    - Errors from the operation reach every waiter unchanged; nothing is
      retried.
    """

    def __init__(
        self,
        *,
        default_throttle_seconds: float = 0.5,
        max_tracked_keys: Optional[int] = None,
        now_fn: NowFn | None = None,
        sleep_fn: SleepFn | None = None,
    ) -> None:
        if default_throttle_seconds < 0:
            raise ValueError("default_throttle_seconds must be >= 0")
        if max_tracked_keys is not None and max_tracked_keys < 1:
            raise ValueError("max_tracked_keys must be >= 1 when provided")

        self._default_throttle = float(default_throttle_seconds)
        self._max_tracked_keys = max_tracked_keys
        self._now: NowFn = now_fn or time.monotonic
        self._sleep: SleepFn = sleep_fn or asyncio.sleep
        self._lock = asyncio.Lock()
        self._pending: dict[str, asyncio.Task[Any]] = {}
        # key -> last start and the throttle it ran under, oldest first
        self._last_started: "OrderedDict[str, _ThrottleRecord]" = OrderedDict()

    async def throttled_request(
        self,
        key: str,
        operation_factory: Callable[[], Awaitable[V]],
        throttle_seconds: Optional[float] = None,
    ) -> V:
        """Run or join the operation for ``key``.

        ``throttle_seconds`` overrides the instance default for this call.
        The factory is only invoked when no operation for ``key`` is pending.
        """

        throttle = self._default_throttle if throttle_seconds is None else float(throttle_seconds)
        if throttle < 0:
            raise ValueError("throttle_seconds must be >= 0 when provided")

        async with self._lock:
            task = self._pending.get(key)
            if task is None or task.done():
                delay = self._remaining_window_unlocked(key, throttle)
                task = asyncio.create_task(self._run(key, operation_factory, throttle, delay))
                task.add_done_callback(_consume_exception)
                self._pending[key] = task
            else:
                _logger.debug("joining pending request", extra={"op": "throttled_request", "key": key})

        return await asyncio.shield(task)

    async def clear(self, key: Optional[str] = None) -> None:
        """Forget the throttle record and pending entry for ``key``.

        Without a key, forget everything. A running operation keeps running;
        only the bookkeeping is dropped.
        """
        if key is None:
            await self.clear_all()
            return
        async with self._lock:
            self._pending.pop(key, None)
            self._last_started.pop(key, None)

    async def clear_all(self) -> None:
        async with self._lock:
            self._pending.clear()
            self._last_started.clear()

    def has_pending(self, key: str) -> bool:
        """Whether a not-yet-settled operation is tracked for ``key``."""
        task = self._pending.get(key)
        return bool(task is not None and not task.done())

    def stats(self) -> CoalescerStats:
        pending_keys = [k for k, t in self._pending.items() if not t.done()]
        return CoalescerStats(
            tracked_keys=len(self._last_started),
            pending_count=len(pending_keys),
            pending_keys=pending_keys,
        )

    async def _run(
        self,
        key: str,
        operation_factory: Callable[[], Awaitable[V]],
        throttle: float,
        delay: float,
    ) -> V:
        me = asyncio.current_task()
        try:
            if delay > 0:
                _logger.debug(
                    "throttling request start",
                    extra={"op": "throttled_request", "key": key, "delay_seconds": delay},
                )
                await self._sleep(delay)
            self._record_start_unlocked(key, throttle)
            return await operation_factory()
        finally:
            # Runs before the task's outcome is published to waiters.
            if self._pending.get(key) is me:
                del self._pending[key]

    # --- internal helpers (no awaits; safe on a single event loop) ---
    def _remaining_window_unlocked(self, key: str, throttle: float) -> float:
        last = self._last_started.get(key)
        if last is None:
            return 0.0
        elapsed = self._now() - last.started_at
        return max(0.0, throttle - elapsed)

    def _record_start_unlocked(self, key: str, throttle: float) -> None:
        self._last_started.pop(key, None)
        self._last_started[key] = _ThrottleRecord(started_at=self._now(), throttle=throttle)
        self._evict_if_needed_unlocked()

    def _evict_if_needed_unlocked(self) -> None:
        if self._max_tracked_keys is None:
            return
        excess = len(self._last_started) - self._max_tracked_keys
        if excess <= 0:
            return
        # Only records whose window has closed may go, oldest first. While every
        # window is still open the map stays over the bound.
        now = self._now()
        closed = [k for k, r in self._last_started.items() if not r.window_open(now)]
        for k in closed[:excess]:
            del self._last_started[k]
            _logger.debug("dropping throttle record", extra={"op": "evict", "key": k})


__all__ = ["RequestCoalescer"]
