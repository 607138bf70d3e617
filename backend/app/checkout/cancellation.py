"""Cancellation scope bounding the collaborator calls of one checkout session."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Set, TypeVar

from .exceptions import CheckoutCancelled

logger = logging.getLogger("checkout.cancellation")

T = TypeVar("T")


class CancellationScope:
    """Tracks outstanding calls so that abandoning a checkout cancels them.

    Every awaitable passed to :meth:`run` executes as its own task. Cancelling
    the scope cancels those tasks and makes the waiting callers raise
    :class:`CheckoutCancelled`; once cancelled, the scope refuses new work.
    """

    def __init__(self, name: str = "checkout") -> None:
        self.name = name
        self._tasks: Set["asyncio.Task[object]"] = set()
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def pending(self) -> int:
        return sum(1 for task in self._tasks if not task.done())

    async def run(self, awaitable: Awaitable[T]) -> T:
        if self._cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise CheckoutCancelled(f"Checkout {self.name} was abandoned")

        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        try:
            return await task
        except asyncio.CancelledError:
            if self._cancelled:
                raise CheckoutCancelled(f"Checkout {self.name} was abandoned") from None
            raise

    def cancel(self) -> int:
        """Cancel outstanding calls and return how many were interrupted."""

        self._cancelled = True
        interrupted = 0
        for task in list(self._tasks):
            if not task.done():
                task.cancel()
                interrupted += 1
        if interrupted:
            logger.info("Cancelled %s in-flight call(s) for checkout %s", interrupted, self.name)
        return interrupted


__all__ = ["CancellationScope"]
