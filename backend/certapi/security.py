"""Request-level security: admin Basic auth and the issuer rate limit gate.

Rate limiting is opt-in per caller: requests without an ``x-api-key`` header
pass through unmetered. Unauthenticated traffic has no limiter of its own.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import math
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from certapi.core.config import Settings, get_settings
from certapi.services.issuers import IssuerDirectory, IssuerIdentity, IssuerLookupError
from certapi.services.rate_limit import RateLimiter, RateLimitResult

logger = logging.getLogger(__name__)

API_KEY_HEADER = "x-api-key"


# ---------------------
# Basic auth (admin)
# ---------------------

_basic = HTTPBasic(auto_error=False)


def _pbkdf2(password: str, *, salt: bytes, rounds: int = 200_000) -> str:
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds)
    return f"pbkdf2_sha256${rounds}${base64.b64encode(salt).decode()}${base64.b64encode(digest).decode()}"


def _verify_pbkdf2(password: str, encoded: str) -> bool:
    try:
        algo, rounds_s, salt_b64, hash_b64 = encoded.split("$", 3)
        rounds = int(rounds_s)
        salt = base64.b64decode(salt_b64)
        expected = base64.b64decode(hash_b64)
        if algo != "pbkdf2_sha256":
            return False
        digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds)
    except (ValueError, OverflowError):
        return False
    return hmac.compare_digest(digest, expected)


def _derive_hash_from_settings(settings: Settings) -> Optional[str]:
    if settings.auth_basic_password_hash:
        return settings.auth_basic_password_hash
    if settings.auth_basic_password_plain:
        salt = hashlib.sha256(b"certapi-basic-salt").digest()[:16]
        return _pbkdf2(settings.auth_basic_password_plain, salt=salt)
    return None


async def require_basic_user(
    settings: Settings = Depends(get_settings),
    credentials: HTTPBasicCredentials | None = Depends(_basic),
) -> dict:
    """Validate HTTP Basic credentials against the configured admin user."""
    if not credentials or not settings.auth_basic_username:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Admin authentication required")

    if not hmac.compare_digest(credentials.username or "", settings.auth_basic_username):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication failed")

    encoded = _derive_hash_from_settings(settings)
    if not encoded or not _verify_pbkdf2(credentials.password or "", encoded):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication failed")

    return {"username": credentials.username, "roles": ["admin"]}


# ---------------------
# Issuer rate limit gate
# ---------------------


@dataclass(frozen=True, slots=True)
class GateDecision:
    issuer: Optional[IssuerIdentity]
    result: Optional[RateLimitResult]
    headers: dict[str, str]


def route_key_for(request: Request) -> str:
    """Matched route template (``/api/issuers/{issuer_id}/usage``), never the raw URL."""

    route = request.scope.get("route")
    path = getattr(route, "path", None)
    if path:
        return path
    return request.url.path


def rate_limit_headers(result: RateLimitResult, now_ms: int) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset_at // 1000),
    }
    if not result.allowed:
        headers["Retry-After"] = str(max(math.ceil((result.reset_at - now_ms) / 1000), 1))
    return headers


class RateLimitGate:
    """Resolve the caller's issuer, charge its quota and build response headers."""

    def __init__(self, directory: IssuerDirectory, limiter: RateLimiter, *, fail_open: bool = True) -> None:
        self.directory = directory
        self.limiter = limiter
        self.fail_open = fail_open

    async def check(self, api_key: str | None, route_key: str) -> GateDecision:
        if not api_key:
            return GateDecision(issuer=None, result=None, headers={})

        try:
            issuer = await self.directory.resolve(api_key)
        except IssuerLookupError:
            if self.fail_open:
                logger.error(
                    "Issuer lookup unavailable; admitting %s without rate limiting", route_key, exc_info=True
                )
                return GateDecision(issuer=None, result=None, headers={})
            logger.error("Issuer lookup unavailable; rejecting keyed request to %s", route_key, exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Issuer directory unavailable",
            )

        if issuer is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")

        result = self.limiter.consume(issuer.id, issuer.tier, route_key)
        headers = rate_limit_headers(result, self.limiter.now())
        if not result.allowed:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={
                    "status_code": status.HTTP_429_TOO_MANY_REQUESTS,
                    "message": "Rate limit exceeded",
                    "retry_after_seconds": int(headers["Retry-After"]),
                },
                headers=headers,
            )
        return GateDecision(issuer=issuer, result=result, headers=headers)


def get_rate_limit_gate(request: Request) -> RateLimitGate:
    """Return the gate assembled during application startup."""

    gate = getattr(request.app.state, "rate_limit_gate", None)
    if gate is None:
        raise RuntimeError("Rate limit gate is not initialised; is the lifespan running?")
    return gate


async def enforce_rate_limit(
    request: Request,
    response: Response,
    gate: RateLimitGate = Depends(get_rate_limit_gate),
) -> Optional[IssuerIdentity]:
    decision = await gate.check(request.headers.get(API_KEY_HEADER), route_key_for(request))
    for name, value in decision.headers.items():
        response.headers[name] = value
    # read back by the header middleware when the endpoint raises
    request.state.rate_limit_headers = decision.headers
    request.state.issuer = decision.issuer
    return decision.issuer


async def require_issuer(
    issuer: Optional[IssuerIdentity] = Depends(enforce_rate_limit),
) -> IssuerIdentity:
    """Reject calls that did not present a valid API key."""

    if issuer is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing API key")
    return issuer


__all__ = [
    "API_KEY_HEADER",
    "GateDecision",
    "RateLimitGate",
    "enforce_rate_limit",
    "get_rate_limit_gate",
    "rate_limit_headers",
    "require_basic_user",
    "require_issuer",
    "route_key_for",
]
