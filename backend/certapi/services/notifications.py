"""Rate limit side effects: job descriptors, queue backends and handlers.

The dispatcher hands jobs to a single background thread so the request path
never waits on the broker. Lost jobs are logged, never raised.
"""
from __future__ import annotations

import logging
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Protocol

from celery import Celery

logger = logging.getLogger(__name__)

RATE_LIMIT_QUEUE_NAME = "rate-limit-queue"


class RateLimitJobType(str, Enum):
    EXCEEDED = "rate-limit-exceeded"
    UPGRADE_NOTIFICATION = "rate-limit-upgrade-notification"


@dataclass(frozen=True, slots=True)
class RateLimitJob:
    job_type: RateLimitJobType
    payload: Dict[str, Any]


class JobQueue(Protocol):
    def add(self, job_type: str, payload: Dict[str, Any]) -> None: ...


class CeleryJobQueue:
    """Push jobs to Celery workers by task name."""

    def __init__(self, app: Celery, *, queue: str = RATE_LIMIT_QUEUE_NAME) -> None:
        self._app = app
        self._queue = queue

    @property
    def app(self) -> Celery:
        return self._app

    def add(self, job_type: str, payload: Dict[str, Any]) -> None:
        self._app.send_task(job_type, kwargs={"payload": payload}, queue=self._queue)


class InMemoryJobQueue:
    """Process-local queue used when no broker is configured."""

    def __init__(self, maxlen: int = 1000) -> None:
        self._jobs: deque[RateLimitJob] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def add(self, job_type: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self._jobs.append(RateLimitJob(RateLimitJobType(job_type), dict(payload)))
        logger.debug("Queued %s job in memory", job_type)

    def drain(self) -> list[RateLimitJob]:
        with self._lock:
            jobs = list(self._jobs)
            self._jobs.clear()
        return jobs

    def __len__(self) -> int:
        return len(self._jobs)


class RateLimitDispatcher:
    """Fire-and-forget publisher for rate limit events."""

    def __init__(
        self,
        queue: JobQueue,
        *,
        executor: Optional[ThreadPoolExecutor] = None,
        max_pending: int = 1000,
    ) -> None:
        self._queue = queue
        self._max_pending = max(1, int(max_pending))
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="rate-limit-dispatch"
        )
        self._pending: set[Future] = set()
        self._pending_lock = threading.Lock()

    @property
    def queue(self) -> JobQueue:
        return self._queue

    def enqueue_exceeded(
        self,
        issuer_id: str,
        tier: str,
        route_key: str,
        timestamp: int,
        limit: int,
        count: int,
    ) -> None:
        self._submit(
            RateLimitJobType.EXCEEDED,
            {
                "issuer_id": issuer_id,
                "tier": str(getattr(tier, "value", tier)),
                "route": route_key,
                "timestamp": timestamp,
                "limit": limit,
                "count": count,
            },
        )

    def enqueue_upgrade_notice(self, issuer_id: str, route_key: str, limit: int, count: int) -> None:
        self._submit(
            RateLimitJobType.UPGRADE_NOTIFICATION,
            {"issuer_id": issuer_id, "route": route_key, "limit": limit, "count": count},
        )

    def _submit(self, job_type: RateLimitJobType, payload: Dict[str, Any]) -> None:
        with self._pending_lock:
            if len(self._pending) >= self._max_pending:
                logger.warning(
                    "Dropped %s job for issuer %s: %d jobs already pending",
                    job_type.value,
                    payload["issuer_id"],
                    len(self._pending),
                )
                return
            try:
                future = self._executor.submit(self._push, job_type, payload)
            except RuntimeError:
                # executor already shut down
                logger.error("Dropped %s job for issuer %s: dispatcher closed", job_type.value, payload["issuer_id"])
                return
            self._pending.add(future)
        future.add_done_callback(self._forget)

    def _push(self, job_type: RateLimitJobType, payload: Dict[str, Any]) -> None:
        try:
            self._queue.add(job_type.value, payload)
        except Exception:
            logger.exception("Failed to enqueue %s job for issuer %s", job_type.value, payload["issuer_id"])

    def _forget(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def flush(self, timeout: float | None = None) -> None:
        """Block until jobs submitted so far were handed to the queue."""

        with self._pending_lock:
            pending = list(self._pending)
        if pending:
            wait_futures(pending, timeout=timeout)

    def close(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


# ---------------------
# Worker-side handlers
# ---------------------


def handle_rate_limit_exceeded(payload: Dict[str, Any]) -> None:
    logger.warning(
        "Issuer %s (%s) exceeded %s requests on %s",
        payload.get("issuer_id"),
        payload.get("tier"),
        payload.get("limit"),
        payload.get("route"),
    )


def handle_upgrade_notification(payload: Dict[str, Any]) -> None:
    logger.info(
        "Issuer %s reached %s/%s requests on %s",
        payload.get("issuer_id"),
        payload.get("count"),
        payload.get("limit"),
        payload.get("route"),
    )


JOB_HANDLERS = {
    RateLimitJobType.EXCEEDED: handle_rate_limit_exceeded,
    RateLimitJobType.UPGRADE_NOTIFICATION: handle_upgrade_notification,
}


__all__ = [
    "CeleryJobQueue",
    "InMemoryJobQueue",
    "JOB_HANDLERS",
    "JobQueue",
    "RATE_LIMIT_QUEUE_NAME",
    "RateLimitDispatcher",
    "RateLimitJob",
    "RateLimitJobType",
    "handle_rate_limit_exceeded",
    "handle_upgrade_notification",
]
