"""A minimal saga: forward steps paired with compensations.

The row store has no multi-row transaction, so a multi-row change is a
sequence of single-row writes. Each completed step registers its
compensation; if a later step raises, compensations run once each in reverse
order and the original error is re-raised. A failing compensation is logged
and the remaining ones still run.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")

Compensation = Callable[[], Awaitable[Any]]


@dataclass
class CompletedStep:
    name: str
    compensation: Compensation | None


class Saga:
    """Ordered (action, compensation) steps executed in sequence.

    Usage::

        saga = Saga("binding_accept")
        row = await saga.step("bind_requester", bind_requester, unbind_requester)
        await saga.step("bind_target", bind_target, unbind_target)
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self.completed: list[CompletedStep] = []
        self.compensated: list[str] = []

    async def step(
        self,
        name: str,
        action: Callable[[], Awaitable[T]],
        compensation: Compensation | None = None,
    ) -> T:
        """Run ``action``; on failure undo every completed step and re-raise."""
        try:
            result = await action()
        except Exception:
            await self.compensate(failed_step=name)
            raise
        self.completed.append(CompletedStep(name, compensation))
        return result

    async def compensate(self, failed_step: str | None = None) -> None:
        """Run the compensations of completed steps, newest first."""
        while self.completed:
            done = self.completed.pop()
            if done.compensation is None:
                continue
            try:
                await done.compensation()
                self.compensated.append(done.name)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "saga_compensation_failed",
                    saga=self.name,
                    step=done.name,
                    failed_step=failed_step,
                    error=str(exc),
                )
