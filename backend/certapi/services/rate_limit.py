"""In-memory fixed-window rate limiter keyed by issuer and route template.

Counters are process-local: every instance enforces its own limit, so a
deployment with N replicas admits up to N times the configured quota.
"""
from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional, Protocol

from certapi.services.issuers import IssuerTier

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class RateConfig:
    window_ms: int = 60_000
    free_limit: int = 60
    paid_limit: int = 600
    upgrade_threshold: float = 0.8
    sweep_interval_ms: int = 60_000

    def limit_for(self, tier: IssuerTier) -> int:
        return self.paid_limit if tier == IssuerTier.PAID else self.free_limit


@dataclass(slots=True)
class UsageBucket:
    window_start: int
    count: int
    tier: IssuerTier
    notified_upgrade: bool = False


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: int


@dataclass(frozen=True, slots=True)
class ConsumeOutcome:
    allowed: bool
    limit: int
    bucket: UsageBucket
    notify_upgrade: bool = False


class Dispatcher(Protocol):
    def enqueue_exceeded(
        self, issuer_id: str, tier: str, route_key: str, timestamp: int, limit: int, count: int
    ) -> None: ...

    def enqueue_upgrade_notice(self, issuer_id: str, route_key: str, limit: int, count: int) -> None: ...

    def close(self, wait: bool = True) -> None: ...


def bucket_key(issuer_id: str, route_key: str) -> str:
    return f"{issuer_id}:{route_key}"


class UsageCounterStore:
    """Per-(issuer, route) usage buckets guarded by a single lock."""

    def __init__(self, window_ms: int) -> None:
        self._window_ms = max(1, int(window_ms))
        self._buckets: dict[str, UsageBucket] = {}
        # key -> (issuer_id, route_key); route templates may contain ':'
        self._owners: dict[str, tuple[str, str]] = {}
        self._lock = threading.Lock()

    @property
    def window_ms(self) -> int:
        return self._window_ms

    def get(self, issuer_id: str, route_key: str) -> Optional[UsageBucket]:
        with self._lock:
            bucket = self._buckets.get(bucket_key(issuer_id, route_key))
            return replace(bucket) if bucket else None

    def try_consume(
        self,
        issuer_id: str,
        tier: IssuerTier,
        route_key: str,
        *,
        config: RateConfig,
        now: int,
    ) -> ConsumeOutcome:
        """Roll over, check and increment one bucket atomically."""

        key = bucket_key(issuer_id, route_key)
        limit = config.limit_for(tier)
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = UsageBucket(window_start=now, count=0, tier=tier)
                self._buckets[key] = bucket
                self._owners[key] = (issuer_id, route_key)
            if now - bucket.window_start >= self._window_ms:
                bucket.window_start = now
                bucket.count = 0
                bucket.notified_upgrade = False
                bucket.tier = tier

            if bucket.count >= limit:
                return ConsumeOutcome(allowed=False, limit=limit, bucket=replace(bucket))

            bucket.count += 1
            notify = False
            if (
                tier == IssuerTier.FREE
                and not bucket.notified_upgrade
                and bucket.count >= math.floor(limit * config.upgrade_threshold)
            ):
                bucket.notified_upgrade = True
                notify = True
            return ConsumeOutcome(
                allowed=True, limit=limit, bucket=replace(bucket), notify_upgrade=notify
            )

    def snapshot(self, now: int) -> list[tuple[str, str, UsageBucket]]:
        with self._lock:
            return [
                (*self._owners[key], replace(bucket))
                for key, bucket in self._buckets.items()
                if now - bucket.window_start < self._window_ms
            ]

    def sweep(self, now: int) -> int:
        """Drop buckets whose window has already elapsed."""

        with self._lock:
            stale = [
                key
                for key, bucket in self._buckets.items()
                if now - bucket.window_start >= self._window_ms
            ]
            for key in stale:
                del self._buckets[key]
                del self._owners[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._buckets)


class RateLimiter:
    """Fixed-window decision engine with tiered limits and upgrade nudges."""

    def __init__(
        self,
        config: RateConfig,
        dispatcher: Dispatcher,
        *,
        store: Optional[UsageCounterStore] = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._config = config
        self._dispatcher = dispatcher
        self._store = store or UsageCounterStore(config.window_ms)
        self._clock = clock
        self._last_sweep = clock()
        self._sweep_lock = threading.Lock()

    @property
    def config(self) -> RateConfig:
        return self._config

    @property
    def window_ms(self) -> int:
        return self._store.window_ms

    @property
    def store(self) -> UsageCounterStore:
        return self._store

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    def now(self) -> int:
        return self._clock()

    def consume(self, issuer_id: str, tier: IssuerTier, route_key: str) -> RateLimitResult:
        now = self._clock()
        self._maybe_sweep(now)
        outcome = self._store.try_consume(
            issuer_id, tier, route_key, config=self._config, now=now
        )
        bucket = outcome.bucket
        reset_at = bucket.window_start + self.window_ms

        if not outcome.allowed:
            self._dispatch(
                self._dispatcher.enqueue_exceeded,
                issuer_id,
                tier.value,
                route_key,
                now,
                outcome.limit,
                bucket.count,
            )
            return RateLimitResult(allowed=False, limit=outcome.limit, remaining=0, reset_at=reset_at)

        if outcome.notify_upgrade:
            self._dispatch(
                self._dispatcher.enqueue_upgrade_notice,
                issuer_id,
                route_key,
                outcome.limit,
                bucket.count,
            )
            logger.info(
                "Issuer %s reached %d/%d requests on %s", issuer_id, bucket.count, outcome.limit, route_key
            )

        return RateLimitResult(
            allowed=True,
            limit=outcome.limit,
            remaining=max(outcome.limit - bucket.count, 0),
            reset_at=reset_at,
        )

    def usage_summary(self) -> list[dict]:
        now = self._clock()
        return [
            {
                "issuer_id": issuer_id,
                "route": route,
                "tier": bucket.tier.value,
                "count": bucket.count,
                "limit": self._config.limit_for(bucket.tier),
                "reset_at": bucket.window_start + self.window_ms,
            }
            for issuer_id, route, bucket in self._store.snapshot(now)
        ]

    def _dispatch(self, fn: Callable[..., None], *args: object) -> None:
        # The quota decision stands no matter what the dispatcher does.
        try:
            fn(*args)
        except Exception:
            logger.exception("Rate limit side effect dispatch failed")

    def _maybe_sweep(self, now: int) -> None:
        if now - self._last_sweep < self._config.sweep_interval_ms:
            return
        if not self._sweep_lock.acquire(blocking=False):
            return
        try:
            self._last_sweep = now
            evicted = self._store.sweep(now)
            if evicted:
                logger.debug("Evicted %d expired usage buckets", evicted)
        finally:
            self._sweep_lock.release()


__all__ = [
    "ConsumeOutcome",
    "RateConfig",
    "RateLimitResult",
    "RateLimiter",
    "UsageBucket",
    "UsageCounterStore",
    "bucket_key",
]
