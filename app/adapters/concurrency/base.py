"""Concurrency limiter interfaces.

Code calling an external service should depend on this abstraction rather than
on the concrete limiter, so tests can substitute their own and the admission
policy can change without touching call sites.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

T = TypeVar("T")

# A deferred unit of work: calling it starts the operation.
Operation = Callable[[], Awaitable[T]]


@dataclass(frozen=True)
class LimiterStats:
    """Point-in-time snapshot of a limiter.

    Attributes:
        name: Resource name the limiter guards.
        capacity: Maximum number of operations allowed to run at once.
        active: Operations currently running.
        pending: Operations queued and waiting for a slot.
        admitted: Operations started since the limiter was created.
        completed: Operations that finished (successfully or not).
        failed: Operations that finished by raising.
    """

    name: str
    capacity: int
    active: int
    pending: int
    admitted: int
    completed: int
    failed: int


class AbstractConcurrencyLimiter(ABC):
    """Interface for per-resource concurrency limiters."""

    @abstractmethod
    def submit(self, operation: Operation[T]) -> asyncio.Future[T]:
        """Submit an operation for admission.

        Returns immediately. The operation starts now if a slot is free,
        otherwise once every operation submitted before it has been admitted
        and a slot frees up.

        Args:
            operation: Zero-argument callable returning an awaitable.

        Returns:
            Future settling with the operation's result or exception.
        """
        raise NotImplementedError

    @abstractmethod
    def stats(self) -> LimiterStats:
        """Return a snapshot of the limiter's counters."""
        raise NotImplementedError

    async def run(self, operation: Operation[T]) -> T:
        """Submit an operation and wait for its outcome."""
        return await self.submit(operation)

    def __call__(self, operation: Operation[T]) -> asyncio.Future[Any]:
        return self.submit(operation)
