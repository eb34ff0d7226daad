"""
DJED ANALYTICS - Bounded Fan-Out
Runs many independent fetches a few at a time with a pause between batches,
and sibling tasks that must all finish or all stop together.
"""
import asyncio
from typing import Any, Awaitable, Callable, List, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def process_batch(
    items: Sequence[T],
    processor: Callable[[T], Awaitable[R]],
    batch_size: int,
    delay_seconds: float = 0.0,
) -> List[R]:
    """
    Apply `processor` to every item, at most `batch_size` concurrently.

    Results keep the input order. Sleeps `delay_seconds` between batches,
    never after the last one. The first exception raised by a processor
    propagates once its batch has settled.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    results: List[R] = []
    for start in range(0, len(items), batch_size):
        batch = items[start:start + batch_size]
        outcomes = await asyncio.gather(*(processor(item) for item in batch), return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        results.extend(outcomes)
        if delay_seconds > 0 and start + batch_size < len(items):
            await asyncio.sleep(delay_seconds)
    return results


async def gather_or_cancel(*aws: Awaitable[Any]) -> List[Any]:
    """
    Run awaitables concurrently and return their results in order.

    When one fails, the others are cancelled and awaited before the first
    error propagates, so nothing is left running once this returns.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
