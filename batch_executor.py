"""
Batch Progress Executor

Runs one async operation per work item and reports back through a lazy
async stream. For every settled item the stream yields a BatchProgress with
the running count, then the ItemResult for that item. Results arrive in
completion order; correlate them through ItemResult.index or .item.
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, List, Optional, Union

from registry_errors import ItemOperationError
from registry_models import BatchProgress, BatchSummary, ItemResult

logger = logging.getLogger(__name__)

ProgressEvent = Union[BatchProgress, ItemResult]
ItemOperation = Callable[[Any], Awaitable[Any]]


async def _settle(index: int, item: Any, operation: ItemOperation) -> ItemResult:
    try:
        value = await operation(item)
    except Exception as e:
        logger.warning(f"Batch item {index} ({item!r}) failed: {e}")
        return ItemResult(index=index, item=item, error=ItemOperationError(item, e))
    return ItemResult(index=index, item=item, value=value)


async def run_batch(
    items: Iterable[Any],
    operation: ItemOperation,
    concurrency_step: Optional[int] = None,
) -> AsyncIterator[ProgressEvent]:
    """Dispatch `operation` over `items` in groups of `concurrency_step`.

    With no step every item is dispatched at once. With a step of N, N items
    run together and the next group starts only once the whole group has
    settled, and only when the consumer keeps pulling. Item failures never
    stop the batch. Closing the stream cancels whatever is still in flight.
    """
    work = list(items)
    if not work:
        return
    if concurrency_step is not None and concurrency_step < 1:
        raise ValueError(f"concurrency_step must be positive, got {concurrency_step}")

    group_size = concurrency_step or len(work)
    completed = 0
    failed = 0

    for start in range(0, len(work), group_size):
        group = work[start:start + group_size]
        tasks = [
            asyncio.ensure_future(_settle(index, item, operation))
            for index, item in enumerate(group, start)
        ]
        try:
            for next_settled in asyncio.as_completed(tasks):
                result = await next_settled
                completed += 1
                if not result.ok:
                    failed += 1
                yield BatchProgress(completed, failed)
                yield result
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                logger.debug(f"Batch stream closed early, cancelled {len(pending)} in-flight items")
                await asyncio.gather(*pending, return_exceptions=True)

    logger.debug(f"Batch finished: {completed} items, {failed} failed")


async def collect_results(stream: AsyncIterator[ProgressEvent]) -> BatchSummary:
    """Drain a progress stream into successes, failures and the last progress value"""
    summary = BatchSummary()
    async for event in stream:
        if isinstance(event, BatchProgress):
            summary.progress = event
        elif event.ok:
            summary.succeeded.append(event)
        else:
            summary.failed.append(event)
    return summary


def results_in_order(results: List[ItemResult]) -> List[ItemResult]:
    """Sort results back into input order"""
    return sorted(results, key=lambda result: result.index)
