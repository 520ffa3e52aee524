"""Uniform-latency floor for verification endpoints.

Wrapping a handler body in ``uniform_latency`` makes success and every failure
path take at least the same wall time, so response timing does not reveal
whether an email is registered or a code was close.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from types import TracebackType
from typing import Any


class uniform_latency:  # noqa: N801
    """Async context manager that pads the block to ``floor_ms`` on exit, raise or return."""

    def __init__(
        self,
        floor_ms: int,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.floor = max(0, floor_ms) / 1000.0
        self._clock = clock
        self._sleep = sleep
        self._started = 0.0

    async def __aenter__(self) -> uniform_latency:
        self._started = self._clock()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc_type is not None and issubclass(exc_type, asyncio.CancelledError):
            return
        remaining = self.floor - (self._clock() - self._started)
        if remaining > 0:
            await self._sleep(remaining)
