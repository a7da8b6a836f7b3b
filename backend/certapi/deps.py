"""FastAPI dependency helpers and startup factories."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends

from certapi.core.config import Settings, get_settings
from certapi.security import RateLimitGate, get_rate_limit_gate
from certapi.services.issuers import AnyIssuerStore, IssuerDirectory, build_issuer_store
from certapi.services.notifications import (
    CeleryJobQueue,
    InMemoryJobQueue,
    JobQueue,
    RateLimitDispatcher,
)
from certapi.services.rate_limit import RateConfig, RateLimiter
from certapi.worker.celery_app import get_celery

logger = logging.getLogger(__name__)


def build_job_queue(settings: Settings) -> JobQueue:
    if settings.redis_url:
        return CeleryJobQueue(get_celery(settings.redis_url))
    logger.info("REDIS_URL not set; rate limit jobs stay in an in-process queue")
    return InMemoryJobQueue()


def build_rate_limit_gate(
    settings: Settings,
    *,
    store: Optional[AnyIssuerStore] = None,
    queue: Optional[JobQueue] = None,
) -> RateLimitGate:
    """Wire directory, limiter and dispatcher from settings."""

    directory = IssuerDirectory(
        store or build_issuer_store(settings),
        ttl_seconds=settings.issuer_cache_ttl_seconds,
        lookup_timeout_seconds=settings.issuer_lookup_timeout_seconds,
        sweep_interval_ms=settings.rate_limit_sweep_interval_ms,
    )
    config = RateConfig(
        window_ms=settings.rate_limit_window_ms,
        free_limit=settings.rate_limit_free_per_window,
        paid_limit=settings.rate_limit_paid_per_window,
        upgrade_threshold=settings.rate_limit_upgrade_threshold,
        sweep_interval_ms=settings.rate_limit_sweep_interval_ms,
    )
    dispatcher = RateLimitDispatcher(queue or build_job_queue(settings))
    limiter = RateLimiter(config, dispatcher)
    return RateLimitGate(directory, limiter, fail_open=settings.issuer_lookup_fail_open)


def get_issuer_store(settings: Settings = Depends(get_settings)) -> AnyIssuerStore:
    """Return the SQL store when DATABASE_URL is set, the JSONL store otherwise."""

    return build_issuer_store(settings)


def get_rate_limiter(gate: RateLimitGate = Depends(get_rate_limit_gate)) -> RateLimiter:
    return gate.limiter
