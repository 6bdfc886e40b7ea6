from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Iterable, List, Optional, TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def _gather_fail_fast(tasks: List["asyncio.Task[R]"]) -> List[R]:
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        # First failure aborts the stage; wait for the rest to unwind
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def bounded_map(
    items: Iterable[T],
    fn: Callable[[T], Awaitable[R]],
    limit: Optional[int] = None,
) -> List[R]:
    """
    Run ``fn`` over ``items`` with at most ``limit`` calls in flight.

    Results keep the input order. Returns only once every call has finished,
    so callers can treat the return as a barrier. ``limit=None`` runs all
    items at once.
    """
    items = list(items)
    if not items:
        return []

    semaphore = asyncio.Semaphore(limit) if limit else None

    async def run_one(item: T) -> R:
        if semaphore is None:
            return await fn(item)
        async with semaphore:
            return await fn(item)

    tasks = [asyncio.create_task(run_one(item)) for item in items]
    return await _gather_fail_fast(tasks)


async def unbounded_map(
    items: Iterable[T], fn: Callable[[T], Awaitable[R]]
) -> List[R]:
    return await bounded_map(items, fn, limit=None)
