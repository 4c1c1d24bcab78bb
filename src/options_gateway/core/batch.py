"""
Fail-isolated fan-out for batch operations.

Every item of a batch runs as its own task; all tasks are joined and each
outcome is tagged as Ok or Err before being partitioned into a BatchResult.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, List, Sequence, TypeVar, Union

from ..errors import BatchTooLarge, error_reason
from ..types import BatchResult, FailedItem

logger = logging.getLogger(__name__)

I = TypeVar("I")
T = TypeVar("T")

MAX_TRADE_BATCH = 25


@dataclass
class Ok(Generic[T]):
    value: T


@dataclass
class Err:
    error: BaseException

    @property
    def reason(self) -> str:
        return error_reason(self.error)


Outcome = Union[Ok, Err]


def check_batch_size(items: Sequence, limit: int = MAX_TRADE_BATCH) -> None:
    if len(items) > limit:
        raise BatchTooLarge(len(items), limit)


async def run_isolated(operation: Callable[[I], Awaitable[T]], items: Sequence[I]) -> List[Outcome]:
    """Run operation once per item concurrently; outcomes keep input order"""

    async def guarded(item: I) -> Outcome:
        try:
            return Ok(await operation(item))
        except Exception as e:
            logger.warning(f"Batch item failed: {error_reason(e)}", extra={"error_type": type(e).__name__})
            return Err(e)

    tasks = [asyncio.ensure_future(guarded(item)) for item in items]
    return list(await asyncio.gather(*tasks))


def partition(items: Sequence[I], outcomes: Sequence[Outcome]) -> BatchResult[I]:
    """Split items by the outcome at the same position"""
    result: BatchResult[I] = BatchResult()
    for item, outcome in zip(items, outcomes):
        if isinstance(outcome, Ok):
            result.success.append(item)
        else:
            result.failed.append(FailedItem(item=item, reason=outcome.reason))
    return result
