"""Strategies for querying a list of equivalent endpoints."""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List, Sequence, TypeVar

T = TypeVar("T")


async def first_success_sequential(
    endpoints: Sequence[str],
    attempt: Callable[[str], Awaitable[T]],
    succeeded: Callable[[T], bool],
) -> List[T]:
    """Try endpoints one at a time in priority order, stopping at the first success.

    Returns every attempt made; the last one is the success, if any.
    """
    attempts: List[T] = []
    for endpoint in endpoints:
        result = await attempt(endpoint)
        attempts.append(result)
        if succeeded(result):
            break
    return attempts


async def fan_out_parallel(endpoints: Sequence[str], attempt: Callable[[str], Awaitable[T]]) -> List[T]:
    """Run one attempt per endpoint concurrently; results keep endpoint order."""
    return list(await asyncio.gather(*(attempt(endpoint) for endpoint in endpoints)))
