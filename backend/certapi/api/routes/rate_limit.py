"""Read-only rate limit introspection for operators."""
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends

from certapi.deps import get_rate_limiter
from certapi.schemas.rate_limit import RateLimitUsageResponse, UsageItem
from certapi.security import require_basic_user
from certapi.services.rate_limit import RateLimiter


router = APIRouter(prefix="/rate-limit", tags=["rate-limit"])


@router.get(
    "/usage",
    response_model=RateLimitUsageResponse,
    summary="Current rate limit usage by issuer and route",
)
async def get_usage(
    _: dict = Depends(require_basic_user),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> RateLimitUsageResponse:
    items: List[UsageItem] = [UsageItem(**row) for row in limiter.usage_summary()]
    return RateLimitUsageResponse(window_ms=limiter.window_ms, data=items)
