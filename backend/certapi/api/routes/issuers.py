"""Issuer-facing endpoints authenticated by API key."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from certapi.deps import get_rate_limiter
from certapi.schemas.rate_limit import IssuerIdentityResponse, RateLimitUsageResponse, UsageItem
from certapi.security import require_issuer
from certapi.services.issuers import IssuerIdentity
from certapi.services.rate_limit import RateLimiter


router = APIRouter(prefix="/issuers", tags=["issuers"])


@router.get("/me", response_model=IssuerIdentityResponse, summary="Identity behind the API key")
async def get_me(issuer: IssuerIdentity = Depends(require_issuer)) -> IssuerIdentityResponse:
    return IssuerIdentityResponse(id=issuer.id, tier=issuer.tier.value)


@router.get(
    "/{issuer_id}/usage",
    response_model=RateLimitUsageResponse,
    summary="Rate limit buckets of the calling issuer",
)
async def get_issuer_usage(
    issuer_id: str,
    issuer: IssuerIdentity = Depends(require_issuer),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> RateLimitUsageResponse:
    if issuer_id != issuer.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot read another issuer's usage")
    items = [UsageItem(**row) for row in limiter.usage_summary() if row["issuer_id"] == issuer.id]
    return RateLimitUsageResponse(window_ms=limiter.window_ms, data=items)
