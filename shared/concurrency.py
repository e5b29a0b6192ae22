"""
Bounded concurrency helpers.
"""

import asyncio
from typing import Awaitable, Callable, Iterable, List, TypeVar

T = TypeVar("T")


class BoundedGather:
    """Run coroutine factories with at most ``limit`` in flight at once.

    Results are returned in submission order, independent of completion
    order. Exceptions are returned in place when ``return_exceptions`` is
    set, otherwise the first one propagates.
    """

    def __init__(self, limit: int):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.limit = limit
        self._semaphore = asyncio.Semaphore(limit)

    async def _run(self, factory: Callable[[], Awaitable[T]]) -> T:
        async with self._semaphore:
            return await factory()

    async def gather(
        self,
        factories: Iterable[Callable[[], Awaitable[T]]],
        *,
        return_exceptions: bool = False,
    ) -> List[T]:
        return await asyncio.gather(
            *(self._run(factory) for factory in factories),
            return_exceptions=return_exceptions,
        )


async def gather_bounded(
    factories: Iterable[Callable[[], Awaitable[T]]],
    limit: int,
    *,
    return_exceptions: bool = False,
) -> List[T]:
    """Convenience wrapper around :class:`BoundedGather`."""
    return await BoundedGather(limit).gather(factories, return_exceptions=return_exceptions)
