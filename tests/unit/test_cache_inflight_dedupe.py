import asyncio
from typing import Any

import pytest

from mcp_request_cache.cache import TTLCache


class User:
    def __init__(self, user_id: int) -> None:
        self.user_id = user_id


@pytest.mark.asyncio
async def test_rapid_callers_share_one_fetch_and_same_object(clock) -> None:
    cache: TTLCache[User] = TTLCache(now_fn=clock.now)

    started = asyncio.Event()
    proceed = asyncio.Event()
    calls = 0

    async def fetch_user() -> User:
        nonlocal calls
        calls += 1
        started.set()
        await proceed.wait()
        return User(42)

    tasks = [asyncio.create_task(cache.get_or_fetch("user:42", fetch_user, 30)) for _ in range(3)]
    await started.wait()
    assert cache.has_pending("user:42")
    assert cache.stats().pending_count == 1

    proceed.set()
    results = await asyncio.gather(*tasks)

    assert calls == 1
    assert results[0] is results[1] is results[2]
    assert results[0].user_id == 42
    assert not cache.has_pending("user:42")


@pytest.mark.asyncio
async def test_failure_reaches_every_waiter_and_is_not_cached(clock) -> None:
    cache: TTLCache[int] = TTLCache(now_fn=clock.now)

    proceed = asyncio.Event()
    calls = 0

    class Boom(RuntimeError):
        pass

    async def fetch() -> int:
        nonlocal calls
        calls += 1
        await proceed.wait()
        raise Boom("boom")

    t1 = asyncio.create_task(cache.get_or_fetch("k", fetch, 30))
    t2 = asyncio.create_task(cache.get_or_fetch("k", fetch, 30))
    await asyncio.sleep(0)
    proceed.set()

    errors = []
    for t in (t1, t2):
        with pytest.raises(Boom) as exc_info:
            await t
        errors.append(exc_info.value)

    assert calls == 1
    assert errors[0] is errors[1]
    assert cache.stats().cache_size == 0
    assert not cache.has_pending("k")

    async def fetch_ok() -> int:
        nonlocal calls
        calls += 1
        return 7

    assert await cache.get_or_fetch("k", fetch_ok, 30) == 7
    assert calls == 2


@pytest.mark.asyncio
async def test_failed_refresh_keeps_stale_entry_but_retries(clock) -> None:
    cache: TTLCache[str] = TTLCache(now_fn=clock.now)
    outcomes: list[Any] = ["v1", RuntimeError("down"), "v2"]
    calls = 0

    async def fetch() -> str:
        nonlocal calls
        outcome = outcomes[calls]
        calls += 1
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    assert await cache.get_or_fetch("k", fetch, 10) == "v1"
    clock.advance(11)

    with pytest.raises(RuntimeError):
        await cache.get_or_fetch("k", fetch, 10)
    # The stale entry is still there, untouched
    assert cache.stats().cached_keys == ["k"]

    # The failed refresh did not renew the timestamp, so we fetch again
    assert await cache.get_or_fetch("k", fetch, 10) == "v2"
    assert calls == 3


@pytest.mark.asyncio
async def test_serve_stale_on_error_when_enabled(clock, caplog) -> None:
    cache: TTLCache[str] = TTLCache(serve_stale_on_error=True, now_fn=clock.now)
    calls = 0

    async def fetch() -> str:
        nonlocal calls
        calls += 1
        if calls > 1:
            raise RuntimeError("down")
        return "good"

    assert await cache.get_or_fetch("k", fetch, 10) == "good"
    clock.advance(11)

    with caplog.at_level("WARNING", logger="mcp_request_cache.cache"):
        assert await cache.get_or_fetch("k", fetch, 10) == "good"
    assert any("stale" in r.getMessage() for r in caplog.records)

    # Still stale: every call keeps trying upstream
    assert await cache.get_or_fetch("k", fetch, 10) == "good"
    assert calls == 3


@pytest.mark.asyncio
async def test_serve_stale_on_error_without_entry_raises(clock) -> None:
    cache: TTLCache[str] = TTLCache(serve_stale_on_error=True, now_fn=clock.now)

    async def fetch() -> str:
        raise RuntimeError("down")

    with pytest.raises(RuntimeError):
        await cache.get_or_fetch("k", fetch, 10)


@pytest.mark.asyncio
async def test_pending_removed_before_waiters_resume(clock) -> None:
    cache: TTLCache[int] = TTLCache(now_fn=clock.now)
    seen_pending: list[bool] = []

    async def fetch() -> int:
        await asyncio.sleep(0)
        return 1

    async def waiter() -> None:
        await cache.get_or_fetch("k", fetch, 30)
        seen_pending.append(cache.has_pending("k"))

    await asyncio.gather(waiter(), waiter())
    assert seen_pending == [False, False]


@pytest.mark.asyncio
async def test_invalidate_does_not_cancel_in_flight_fetch(clock) -> None:
    cache: TTLCache[int] = TTLCache(now_fn=clock.now)
    started = asyncio.Event()
    proceed = asyncio.Event()
    calls = 0

    async def fetch() -> int:
        nonlocal calls
        calls += 1
        started.set()
        await proceed.wait()
        return 5

    t = asyncio.create_task(cache.get_or_fetch("k", fetch, 30))
    await started.wait()
    await cache.invalidate("k")
    assert cache.has_pending("k")

    # A caller arriving now still joins the running fetch
    t2 = asyncio.create_task(cache.get_or_fetch("k", fetch, 30))
    proceed.set()
    assert await t == 5
    assert await t2 == 5
    assert calls == 1
    # The in-flight result was stored once it completed
    assert cache.stats().cached_keys == ["k"]


@pytest.mark.asyncio
async def test_cancelling_one_waiter_does_not_cancel_fetch(clock) -> None:
    cache: TTLCache[str] = TTLCache(now_fn=clock.now)
    started = asyncio.Event()
    proceed = asyncio.Event()
    fetch_cancelled = False

    async def fetch() -> str:
        nonlocal fetch_cancelled
        started.set()
        try:
            await proceed.wait()
        except asyncio.CancelledError:
            fetch_cancelled = True
            raise
        return "ok"

    w1 = asyncio.create_task(cache.get_or_fetch("k", fetch, 30))
    w2 = asyncio.create_task(cache.get_or_fetch("k", fetch, 30))
    await started.wait()

    w1.cancel()
    with pytest.raises(asyncio.CancelledError):
        await w1

    proceed.set()
    assert await w2 == "ok"
    assert fetch_cancelled is False


@pytest.mark.asyncio
async def test_keys_do_not_block_each_other(clock) -> None:
    cache: TTLCache[str] = TTLCache(now_fn=clock.now)
    release_a = asyncio.Event()

    async def slow_a() -> str:
        await release_a.wait()
        return "a"

    async def fast_b() -> str:
        return "b"

    ta = asyncio.create_task(cache.get_or_fetch("a", slow_a, 30))
    await asyncio.sleep(0)
    # "b" completes while "a" is still in flight
    assert await cache.get_or_fetch("b", fast_b, 30) == "b"
    assert cache.has_pending("a")

    release_a.set()
    assert await ta == "a"
