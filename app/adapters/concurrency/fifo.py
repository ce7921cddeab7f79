"""In-process FIFO concurrency limiter.

Notes:
- Per-process only: every worker process enforces its own limits.
- Not thread-safe: all calls must come from the event loop thread. State is
  only mutated inside synchronous steps, so no lock is needed.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any

from app.adapters.concurrency.base import (
    AbstractConcurrencyLimiter,
    LimiterStats,
    Operation,
    T,
)

logger = logging.getLogger(__name__)


@dataclass
class _WorkItem:
    operation: Operation[Any]
    future: asyncio.Future[Any]


class FifoConcurrencyLimiter(AbstractConcurrencyLimiter):
    """Limit concurrent operations with strict first-in, first-out admission.

    ``capacity`` works as a pool of credits: an operation takes one credit to
    start and hands it back when it finishes, at which point the oldest queued
    operation is started. Outcomes pass through untouched, and a failing
    operation releases its credit the same way a successful one does.

    There is no timeout: an operation that never finishes keeps its credit.
    """

    def __init__(self, capacity: int, *, name: str = "default") -> None:
        """Initialize the limiter.

        Args:
            capacity: Maximum number of operations running at once.
            name: Resource name used in logs and stats.

        Raises:
            ValueError: If capacity is lower than 1.
        """
        if capacity < 1:
            raise ValueError("capacity must be >= 1")

        self._capacity = capacity
        self._name = name
        self._active = 0
        self._queue: deque[_WorkItem] = deque()
        self._tasks: set[asyncio.Task[Any]] = set()
        self._admitted = 0
        self._completed = 0
        self._failed = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"FifoConcurrencyLimiter(name={self._name!r}, capacity={self._capacity}, "
            f"active={self._active}, pending={self.pending_count})"
        )

    @property
    def name(self) -> str:
        return self._name

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def pending_count(self) -> int:
        """Queued operations still waiting; cancelled waiters are not counted."""
        return sum(1 for item in self._queue if not item.future.done())

    def submit(self, operation: Operation[T]) -> asyncio.Future[T]:
        """Admit the operation now or queue it behind earlier submissions.

        Must be called with a running event loop.

        Args:
            operation: Zero-argument callable. It is invoked only once
                admitted; a plain return value is accepted as well as an
                awaitable.

        Returns:
            Future settling exactly once with the operation's outcome.
        """
        loop = asyncio.get_running_loop()
        item = _WorkItem(operation=operation, future=loop.create_future())

        if self._active < self._capacity:
            self._admit(item)
        else:
            self._queue.append(item)
            logger.debug(
                "limiter.queued",
                extra={
                    "limiter": self._name,
                    "active": self._active,
                    "pending": self.pending_count,
                },
            )

        return item.future

    def stats(self) -> LimiterStats:
        return LimiterStats(
            name=self._name,
            capacity=self._capacity,
            active=self._active,
            pending=self.pending_count,
            admitted=self._admitted,
            completed=self._completed,
            failed=self._failed,
        )

    def _admit(self, item: _WorkItem) -> None:
        self._active += 1
        self._admitted += 1
        logger.debug(
            "limiter.admitted",
            extra={
                "limiter": self._name,
                "active": self._active,
                "pending": self.pending_count,
            },
        )

        task = asyncio.ensure_future(self._execute(item))
        self._tasks.add(task)
        # Runs even if the task is cancelled before its first step.
        task.add_done_callback(functools.partial(self._settle, item))

    async def _execute(self, item: _WorkItem) -> Any:
        result = item.operation()
        if inspect.isawaitable(result):
            result = await result
        return result

    def _settle(self, item: _WorkItem, task: asyncio.Task[Any]) -> None:
        """Forward the task's outcome to the submitter and free the slot."""
        self._tasks.discard(task)

        if task.cancelled():
            # The operation raised CancelledError or the loop cancelled the task.
            self._failed += 1
            if not item.future.done():
                item.future.cancel()
        elif task.exception() is not None:
            self._failed += 1
            if not item.future.done():
                item.future.set_exception(task.exception())
        elif not item.future.done():
            item.future.set_result(task.result())

        self._release()

    def _release(self) -> None:
        self._active -= 1
        self._completed += 1

        while self._queue and self._active < self._capacity:
            item = self._queue.popleft()
            if item.future.done():
                # Submitter cancelled the future while it was still waiting.
                logger.debug(
                    "limiter.skipped",
                    extra={"limiter": self._name, "pending": self.pending_count},
                )
                continue
            self._admit(item)

        logger.debug(
            "limiter.released",
            extra={
                "limiter": self._name,
                "active": self._active,
                "pending": self.pending_count,
            },
        )
