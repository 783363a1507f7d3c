from __future__ import annotations

import asyncio
from collections.abc import Iterator

import pytest
import respx


class FakeClock:
    """Monotonic clock and sleep stand-in; sleeping advances time instantly."""

    def __init__(self, start: float = 100.0) -> None:
        self._t = start
        self.sleeps: list[float] = []

    def now(self) -> float:  # acts as NowFn
        return self._t

    def advance(self, dt: float) -> None:
        self._t += dt

    async def sleep(self, delay: float) -> None:  # acts as SleepFn
        self.sleeps.append(delay)
        self._t += delay
        # still yield to the loop like a real sleep would
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def respx_router() -> Iterator[respx.Router]:
    with respx.mock(assert_all_called=False) as router:
        yield router
