"""Bounded fan-out for independent units of asynchronous work."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Iterable, TypeVar

ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")


@dataclass(slots=True)
class Outcome(Generic[ItemT, ResultT]):
    item: ItemT
    result: ResultT | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def run_bounded(
    items: Iterable[ItemT],
    worker: Callable[[ItemT], Awaitable[ResultT]],
    *,
    max_concurrency: int,
) -> list[Outcome[ItemT, ResultT]]:
    """Run ``worker`` over ``items`` with at most ``max_concurrency`` in flight.

    Every item yields an :class:`Outcome` in input order. ``Exception``
    subclasses are recorded on the outcome; cancellation still propagates.
    """

    if max_concurrency < 1:
        raise ValueError("max_concurrency must be at least 1")
    semaphore = asyncio.Semaphore(max_concurrency)

    async def _run(item: ItemT) -> Outcome[ItemT, ResultT]:
        async with semaphore:
            try:
                return Outcome(item=item, result=await worker(item))
            except Exception as exc:
                return Outcome(item=item, error=exc)

    return list(await asyncio.gather(*(_run(item) for item in items)))


__all__ = ["Outcome", "run_bounded"]
