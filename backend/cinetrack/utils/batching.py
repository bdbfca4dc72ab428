import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_in_batches(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[Any]],
    batch_size: int = 10,
    pause: float = 0.0,
) -> List[Any]:
    """Run ``worker`` over ``items`` with at most ``batch_size`` calls in flight.

    Results keep the input order. A worker that raises yields ``None`` for
    its item instead of failing the whole run.
    """
    results: List[Any] = []
    batch_size = max(1, batch_size)
    for start in range(0, len(items), batch_size):
        batch = items[start:start + batch_size]
        outcomes = await asyncio.gather(*(worker(item) for item in batch), return_exceptions=True)
        for item, outcome in zip(batch, outcomes):
            if isinstance(outcome, Exception):
                logger.debug(f"Batch worker failed for {item!r}: {outcome}")
                results.append(None)
            else:
                results.append(outcome)
        if pause and start + batch_size < len(items):
            await asyncio.sleep(pause)
    return results
