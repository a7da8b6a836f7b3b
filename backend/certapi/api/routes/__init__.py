"""API route registrations."""
from fastapi import APIRouter

from certapi.api.routes import admin, issuers, rate_limit


api_router = APIRouter()
api_router.include_router(issuers.router)
api_router.include_router(rate_limit.router)
api_router.include_router(admin.router)

__all__ = ["api_router"]
