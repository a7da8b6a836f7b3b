"""Schemas for issuer administration."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from certapi.services.issuers import IssuerTier


class IssuerCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200, description="Issuer display name")
    tier: IssuerTier = Field(default=IssuerTier.FREE)
    public_key: Optional[str] = Field(default=None, description="Signing public key; generated when omitted")
    description: Optional[str] = None
    website: Optional[str] = None
    contact_email: Optional[str] = None


class IssuerUpdateRequest(BaseModel):
    tier: Optional[IssuerTier] = None
    is_active: Optional[bool] = None


class IssuerItem(BaseModel):
    id: str
    name: str
    public_key: str
    tier: IssuerTier
    is_active: bool
    description: Optional[str] = None
    website: Optional[str] = None
    contact_email: Optional[str] = None
    created_at: str


class IssuerCreateResponse(IssuerItem):
    api_key: str = Field(..., description="Plaintext API key, returned only once")
