"""In-flight request deduplication.

When several callers ask for the same upstream data at the same time, only the
first one actually issues the call; the others wait on its outcome. An entry
lives only while its call is running, so this is not a cache: the next request
after completion starts a fresh call.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InflightDeduplicator:
    """Coalesce concurrent calls sharing the same key.

    Must be used from a single event loop.
    """

    def __init__(self) -> None:
        self._inflight: dict[str, asyncio.Future[Any]] = {}
        self._started = 0
        self._shared = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"InflightDeduplicator(inflight={len(self._inflight)}, "
            f"started={self._started}, shared={self._shared})"
        )

    def __contains__(self, key: str) -> bool:
        return key in self._inflight

    async def run(self, key: str, fetch: Callable[[], Awaitable[T]]) -> T:
        """Return the outcome of the in-flight call for key, starting one if needed.

        Args:
            key: Identifies the request (e.g. resource plus URL and params).
            fetch: Zero-argument callable performing the call.

        Returns:
            The call's result. Its exception is raised to every waiter.
        """

        future = self._inflight.get(key)
        if future is None:
            future = asyncio.ensure_future(fetch())
            self._inflight[key] = future
            self._started += 1
            future.add_done_callback(lambda done, k=key: self._forget(k, done))
        else:
            self._shared += 1
            logger.debug(
                "dedup.shared",
                extra={"dedup_key": key[:64], "inflight": len(self._inflight)},
            )

        # A waiter being cancelled must not cancel the call the others share.
        return await asyncio.shield(future)

    def stats(self) -> dict[str, int]:
        """Return counters without exposing keys."""

        return {
            "inflight": len(self._inflight),
            "started": self._started,
            "shared": self._shared,
        }

    def _forget(self, key: str, future: asyncio.Future[Any]) -> None:
        if self._inflight.get(key) is future:
            del self._inflight[key]
        if not future.cancelled():
            # Mark the exception as retrieved; waiters re-raise it themselves.
            future.exception()
