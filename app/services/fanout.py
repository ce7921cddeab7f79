"""Fan a batch of operations out through a single limiter.

Used for batch enrichment: every item is submitted up front, the limiter
decides when each one starts, and results come back in submission order.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, TypeVar

from app.adapters.concurrency.base import AbstractConcurrencyLimiter, Operation

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def gather_limited(
    limiter: AbstractConcurrencyLimiter,
    operations: Iterable[Operation[T]],
    *,
    return_exceptions: bool = False,
) -> list[Any]:
    """Submit all operations and wait for every outcome.

    Args:
        limiter: Limiter of the resource the operations call.
        operations: Zero-argument callables, submitted in iteration order.
        return_exceptions: Return failures in place of results instead of
            raising the first one.

    Returns:
        Results in submission order.
    """
    futures = [limiter.submit(operation) for operation in operations]
    return await asyncio.gather(*futures, return_exceptions=return_exceptions)


async def gather_settled(
    limiter: AbstractConcurrencyLimiter,
    operations: Iterable[Operation[T]],
    *,
    default: Any = None,
) -> list[Any]:
    """Like gather_limited, with failed items replaced by ``default``.

    Each failure is logged; one failing item never affects the others.
    """
    outcomes = await gather_limited(limiter, operations, return_exceptions=True)

    results: list[Any] = []
    for index, outcome in enumerate(outcomes):
        if isinstance(outcome, Exception):
            logger.warning(
                "fanout.item_failed",
                extra={
                    "limiter": limiter.stats().name,
                    "index": index,
                    "error_type": type(outcome).__name__,
                },
            )
            results.append(default)
        else:
            results.append(outcome)
    return results
