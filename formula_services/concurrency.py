"""
formula_services.concurrency -- Bounded fan-out for async evaluations.

``gather_bounded`` runs one coroutine per item under an optional
``asyncio.Semaphore`` and returns results in input order, whatever order
they complete in.  If any coroutine raises, the others are cancelled and
the first exception propagates unchanged (not wrapped in an
``ExceptionGroup``).
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def gather_bounded(
    fn: Callable[[T], Awaitable[R]],
    items: Sequence[T],
    limit: int | None = None,
) -> list[R]:
    """Apply ``fn`` to every item concurrently, at most ``limit`` at a time."""
    if limit is not None and limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")
    semaphore = asyncio.Semaphore(limit) if limit is not None else None

    async def run(item: T) -> R:
        if semaphore is None:
            return await fn(item)
        async with semaphore:
            return await fn(item)

    tasks = [asyncio.ensure_future(run(item)) for item in items]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        raise
