"""
Bounded, order-preserving async fan-out.
"""
import asyncio
from typing import Any, Awaitable, Callable, List, Sequence, TypeVar

from core.errors import ConfigurationError

I = TypeVar('I')
O = TypeVar('O')


async def map_with_concurrency(items: Sequence[I], limit: int,
                               worker: Callable[[I, int], Awaitable[O]],
                               return_exceptions: bool = False) -> List[Any]:
    """Run `worker(item, index)` with at most `limit` in flight.

    Results are in input order. Without `return_exceptions` the first
    failure propagates; sibling tasks are left to finish, never cancelled.
    """
    if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
        raise ConfigurationError(f"map_with_concurrency: invalid limit={limit!r}")

    semaphore = asyncio.Semaphore(limit)

    async def run(item: I, index: int) -> O:
        async with semaphore:
            return await worker(item, index)

    return await asyncio.gather(
        *(run(item, i) for i, item in enumerate(items)),
        return_exceptions=return_exceptions,
    )


def chunk_list(items: Sequence[I], size: int) -> List[List[I]]:
    if size <= 0:
        raise ConfigurationError(f"group size must be positive. Received: {size}")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]
