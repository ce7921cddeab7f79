from __future__ import annotations

from pydantic import BaseModel, Field

from app.adapters.concurrency.base import LimiterStats


class LimiterStatsResponse(BaseModel):
    """Current state of one resource limiter."""

    resource: str = Field(..., description="Resource name")
    capacity: int = Field(..., description="Maximum concurrent operations", ge=1)
    active: int = Field(..., description="Operations running now", ge=0)
    pending: int = Field(..., description="Operations waiting for a slot", ge=0)
    admitted: int = Field(..., description="Operations started since startup", ge=0)
    completed: int = Field(..., description="Operations finished since startup", ge=0)
    failed: int = Field(..., description="Operations that raised since startup", ge=0)

    @classmethod
    def from_stats(cls, stats: LimiterStats) -> "LimiterStatsResponse":
        return cls(
            resource=stats.name,
            capacity=stats.capacity,
            active=stats.active,
            pending=stats.pending,
            admitted=stats.admitted,
            completed=stats.completed,
            failed=stats.failed,
        )


class LimitsResponse(BaseModel):
    """State of every resource limiter."""

    limiters: list[LimiterStatsResponse] = Field(default_factory=list)
