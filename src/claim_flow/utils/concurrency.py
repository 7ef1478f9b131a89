"""Bounded worker pool for asyncio fan-out."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def map_with_concurrency(
    items: Sequence[T],
    limit: int,
    fn: Callable[[T, int], Awaitable[R]],
) -> list[R]:
    """
    Run ``fn(item, index)`` over *items* with at most *limit* calls in flight.

    Results land in pre-allocated slots, so the returned list follows the
    input order whatever the completion order. Fail-fast: after the first
    exception no new items are started, calls already in flight run to
    completion, then that first exception is raised.
    """
    items = list(items)
    results: list[R | None] = [None] * len(items)
    if not items:
        return []

    cursor = 0
    failure: Exception | None = None

    async def worker() -> None:
        nonlocal cursor, failure
        while failure is None and cursor < len(items):
            index = cursor
            cursor += 1
            try:
                results[index] = await fn(items[index], index)
            except Exception as exc:  # noqa: BLE001 - re-raised after the pool drains
                if failure is None:
                    failure = exc
                return

    width = min(max(1, int(limit)), len(items))
    await asyncio.gather(*(worker() for _ in range(width)))

    if failure is not None:
        raise failure
    return results  # type: ignore[return-value]
