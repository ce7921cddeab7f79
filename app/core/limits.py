"""Per-resource concurrency limiters and their FastAPI wiring.

Every external service gets exactly one limiter, shared by all of its call
sites. The limiters are built once by the application lifespan, stored on
``app.state`` and handed to consumers explicitly (FastAPI dependency or
constructor argument); nothing looks them up through module globals.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from fastapi import Request

from app.adapters.concurrency.base import AbstractConcurrencyLimiter, LimiterStats
from app.adapters.concurrency.fifo import FifoConcurrencyLimiter
from app.core.config import LimitSettings, settings
from app.core.errors import ValidationAppError

logger = logging.getLogger(__name__)


class Resource(str, Enum):
    """External services the application calls."""

    SEARCH = "search"
    GEOCODING = "geocoding"
    MAP_DATA = "map_data"

    @classmethod
    def parse(cls, value: str) -> "Resource":
        """Resolve a resource name, raising a client error for unknown names."""
        try:
            return cls(value.lower())
        except ValueError as exc:
            raise ValidationAppError(
                code="unknown_resource",
                message=f"Unknown resource: '{value}'",
                details={"hint": ", ".join(r.value for r in cls)},
            ) from exc


@dataclass(frozen=True)
class ResourceLimiters:
    """The set of independent limiters, one per resource."""

    search: AbstractConcurrencyLimiter
    geocoding: AbstractConcurrencyLimiter
    map_data: AbstractConcurrencyLimiter

    def for_resource(self, resource: Resource) -> AbstractConcurrencyLimiter:
        return getattr(self, resource.value)

    def stats(self) -> dict[Resource, LimiterStats]:
        return {resource: self.for_resource(resource).stats() for resource in Resource}


def build_resource_limiters(limit_settings: LimitSettings | None = None) -> ResourceLimiters:
    """Create one limiter per resource from configuration.

    Args:
        limit_settings: Capacities to use; defaults to global settings if omitted.

    Returns:
        ResourceLimiters: Fresh limiters with no active or queued work.
    """

    cfg = limit_settings or settings.limits
    limiters = ResourceLimiters(
        search=FifoConcurrencyLimiter(cfg.search_concurrency, name=Resource.SEARCH.value),
        geocoding=FifoConcurrencyLimiter(
            cfg.geocoding_concurrency, name=Resource.GEOCODING.value
        ),
        map_data=FifoConcurrencyLimiter(cfg.map_data_concurrency, name=Resource.MAP_DATA.value),
    )

    logger.info(
        "limits.configured",
        extra={
            "search_concurrency": cfg.search_concurrency,
            "geocoding_concurrency": cfg.geocoding_concurrency,
            "map_data_concurrency": cfg.map_data_concurrency,
        },
    )
    return limiters


def get_resource_limiters(request: Request) -> ResourceLimiters:
    """FastAPI dependency returning the limiters built at startup."""

    return request.app.state.limiters
