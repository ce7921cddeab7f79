from __future__ import annotations

from fastapi import APIRouter, Depends

from app.core.limits import Resource, ResourceLimiters, get_resource_limiters
from app.schemas.limits import LimiterStatsResponse, LimitsResponse

router = APIRouter(tags=["Limits"])


@router.get("/limits", response_model=LimitsResponse)
def list_limits(
    limiters: ResourceLimiters = Depends(get_resource_limiters),
) -> LimitsResponse:
    """Report capacity, active and queued work for every resource limiter.

    Returns:
        LimitsResponse: One entry per resource, in a fixed order.
    """
    return LimitsResponse(
        limiters=[
            LimiterStatsResponse.from_stats(stats) for stats in limiters.stats().values()
        ]
    )


@router.get("/limits/{resource}", response_model=LimiterStatsResponse)
def get_limit(
    resource: str,
    limiters: ResourceLimiters = Depends(get_resource_limiters),
) -> LimiterStatsResponse:
    """Report the state of a single resource limiter.

    Raises:
        ValidationAppError: 400 when the resource name is unknown.
    """
    limiter = limiters.for_resource(Resource.parse(resource))
    return LimiterStatsResponse.from_stats(limiter.stats())
