"""Schemas for rate limit introspection and issuer identity endpoints."""
from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field


class UsageItem(BaseModel):
    issuer_id: str = Field(..., description="Issuer owning the bucket")
    route: str = Field(..., description="Route template the bucket counts")
    tier: str = Field(..., description="Tier the current window was opened with")
    count: int = Field(..., ge=0, description="Requests admitted in the current window")
    limit: int = Field(..., description="Requests allowed per window for the tier")
    reset_at: int = Field(..., description="Window end as Unix epoch milliseconds")


class RateLimitUsageResponse(BaseModel):
    window_ms: int
    data: List[UsageItem]


class IssuerIdentityResponse(BaseModel):
    id: str
    tier: str
