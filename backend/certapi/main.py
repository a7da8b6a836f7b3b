"""FastAPI application entrypoint for the certificate API."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from certapi.api.routes import api_router
from certapi.core.config import Settings, get_settings
from certapi.core.logging import configure_logging
from certapi.db.session import dispose_engine
from certapi.deps import build_rate_limit_gate
from certapi.security import enforce_rate_limit

logger = logging.getLogger(__name__)


def _current_settings(app: FastAPI) -> Settings:
    # Respect dependency overrides so tests can swap settings before startup
    override = app.dependency_overrides.get(get_settings)
    return override() if callable(override) else get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = _current_settings(app)
    configure_logging(settings.log_level)
    gate = build_rate_limit_gate(settings)
    app.state.rate_limit_gate = gate
    logger.info(
        "Rate limiting: window=%dms free=%d paid=%d fail_open=%s",
        settings.rate_limit_window_ms,
        settings.rate_limit_free_per_window,
        settings.rate_limit_paid_per_window,
        settings.issuer_lookup_fail_open,
    )
    try:
        yield
    finally:
        gate.limiter.dispatcher.close()
        await dispose_engine(settings)


app = FastAPI(
    title="Certificate API",
    version="0.1.0",
    lifespan=lifespan,
    dependencies=[Depends(enforce_rate_limit)],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[
        "X-RateLimit-Limit",
        "X-RateLimit-Remaining",
        "X-RateLimit-Reset",
        "Retry-After",
    ],
)


@app.middleware("http")
async def rate_limit_headers_middleware(request: Request, call_next):
    """Carry the caller's quota headers onto error responses raised after the gate."""
    state = request.state
    response = await call_next(request)
    for name, value in getattr(state, "rate_limit_headers", {}).items():
        if name not in response.headers:
            response.headers[name] = value
    return response


app.include_router(api_router, prefix="/api")


class HealthResponse(BaseModel):
    status: str = "ok"


@app.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check() -> HealthResponse:
    """Return service health information for monitoring and load-balancers."""
    return HealthResponse()
