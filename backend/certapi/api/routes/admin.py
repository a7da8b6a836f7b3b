"""Admin endpoints for issuer management (requires Basic auth)."""
from __future__ import annotations

from dataclasses import asdict
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from certapi.deps import get_issuer_store
from certapi.schemas.issuers import (
    IssuerCreateRequest,
    IssuerCreateResponse,
    IssuerItem,
    IssuerUpdateRequest,
)
from certapi.security import require_basic_user
from certapi.services.issuers import AnyIssuerStore, IssuerRecord


router = APIRouter(prefix="/admin", tags=["admin"])


def _to_item(rec: IssuerRecord) -> IssuerItem:
    payload = asdict(rec)
    payload.pop("api_key_hash", None)
    return IssuerItem(**payload)


@router.post(
    "/issuers",
    response_model=IssuerCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an issuer and its API key",
)
async def create_issuer(
    payload: IssuerCreateRequest,
    _: dict = Depends(require_basic_user),
    store: AnyIssuerStore = Depends(get_issuer_store),
) -> IssuerCreateResponse:
    rec, plaintext = await store.create_issuer(
        name=payload.name,
        tier=payload.tier,
        public_key=payload.public_key,
        description=payload.description,
        website=payload.website,
        contact_email=payload.contact_email,
    )
    return IssuerCreateResponse(**_to_item(rec).model_dump(), api_key=plaintext)


@router.get("/issuers", response_model=List[IssuerItem], summary="List issuers")
async def list_issuers(
    _: dict = Depends(require_basic_user),
    store: AnyIssuerStore = Depends(get_issuer_store),
) -> list[IssuerItem]:
    return [_to_item(rec) for rec in await store.list_issuers()]


@router.patch(
    "/issuers/{issuer_id}",
    response_model=IssuerItem,
    summary="Change an issuer's tier or active flag",
)
async def update_issuer(
    issuer_id: str,
    payload: IssuerUpdateRequest,
    _: dict = Depends(require_basic_user),
    store: AnyIssuerStore = Depends(get_issuer_store),
) -> IssuerItem:
    # Cached API key resolutions keep the old tier until their TTL lapses.
    rec = await store.update_issuer(issuer_id, tier=payload.tier, is_active=payload.is_active)
    if rec is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Issuer not found")
    return _to_item(rec)
