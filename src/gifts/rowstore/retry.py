"""Timeouts and bounded retries around a ``RowStore``.

Reads and writes get separate budgets. Only ``TransportError`` is retried
(including a timeout, which is converted to one); integrity errors surface on
the first attempt.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog

from gifts.config import Settings
from gifts.rowstore.errors import TransportError
from gifts.rowstore.filters import Order, Where
from gifts.rowstore.store import Row, RowStore

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    timeout: float
    max_attempts: int
    backoff: float = 0.25


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    label: str,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run ``operation`` under ``policy``.

    Args:
        operation: Zero-argument factory producing a fresh awaitable per attempt.
        policy: Timeout per attempt, attempt ceiling and linear backoff step.
        label: Name used in log lines.
        sleep: Injected for tests.

    Raises:
        TransportError: When every attempt failed to reach the store.
    """
    last_error: TransportError | None = None
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await asyncio.wait_for(operation(), timeout=policy.timeout)
        except asyncio.TimeoutError:
            last_error = TransportError(f"{label} timed out after {policy.timeout}s")
        except TransportError as exc:
            last_error = exc

        if attempt < policy.max_attempts:
            logger.warning("rowstore_retry", op=label, attempt=attempt, error=str(last_error))
            await sleep(policy.backoff * attempt)

    assert last_error is not None
    logger.error("rowstore_unavailable", op=label, attempts=policy.max_attempts, error=str(last_error))
    raise last_error


class ResilientRowStore(RowStore):
    """Wraps another store with per-verb timeouts and retries."""

    def __init__(self, inner: RowStore, read: RetryPolicy, write: RetryPolicy) -> None:
        self.inner = inner
        self.read_policy = read
        self.write_policy = write

    @classmethod
    def from_settings(cls, inner: RowStore, settings: Settings) -> ResilientRowStore:
        return cls(
            inner,
            read=RetryPolicy(
                timeout=settings.store_read_timeout_seconds,
                max_attempts=settings.store_read_max_attempts,
                backoff=settings.store_retry_backoff_seconds,
            ),
            write=RetryPolicy(
                timeout=settings.store_write_timeout_seconds,
                max_attempts=settings.store_write_max_attempts,
                backoff=settings.store_retry_backoff_seconds,
            ),
        )

    async def select(
        self,
        table: str,
        *,
        where: Where = None,
        columns: Sequence[str] | None = None,
        order_by: Sequence[Order] = (),
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Row]:
        return await call_with_retry(
            lambda: self.inner.select(
                table, where=where, columns=columns, order_by=order_by, limit=limit, offset=offset
            ),
            self.read_policy,
            label=f"select:{table}",
        )

    async def count(self, table: str, *, where: Where = None) -> int:
        return await call_with_retry(
            lambda: self.inner.count(table, where=where),
            self.read_policy,
            label=f"count:{table}",
        )

    async def insert(self, table: str, values: Mapping[str, Any] | Sequence[Mapping[str, Any]]) -> list[Row]:
        return await call_with_retry(
            lambda: self.inner.insert(table, values),
            self.write_policy,
            label=f"insert:{table}",
        )

    async def update(self, table: str, values: Mapping[str, Any], *, where: Where) -> list[Row]:
        return await call_with_retry(
            lambda: self.inner.update(table, values, where=where),
            self.write_policy,
            label=f"update:{table}",
        )

    async def upsert(
        self,
        table: str,
        values: Mapping[str, Any] | Sequence[Mapping[str, Any]],
        *,
        conflict: Sequence[str],
    ) -> list[Row]:
        return await call_with_retry(
            lambda: self.inner.upsert(table, values, conflict=conflict),
            self.write_policy,
            label=f"upsert:{table}",
        )

    async def delete(self, table: str, *, where: Where) -> list[Row]:
        return await call_with_retry(
            lambda: self.inner.delete(table, where=where),
            self.write_policy,
            label=f"delete:{table}",
        )
