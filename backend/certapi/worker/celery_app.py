"""Celery integration for rate limit side effects.

When REDIS_URL is configured the API publishes rate limit jobs through this
app and a worker (``celery -A certapi.worker.celery_app worker -Q
rate-limit-queue``) consumes them. Without a broker the API keeps jobs in an
in-process queue instead.
"""
from __future__ import annotations

from typing import Any, Optional

from celery import Celery

from certapi.core.config import get_settings
from certapi.services.notifications import JOB_HANDLERS, RATE_LIMIT_QUEUE_NAME

_CELERY_APPS: dict[str, Celery] = {}


def create_celery(broker_url: str) -> Celery:
    app = Celery("certapi", broker=broker_url, backend=broker_url)
    app.conf.task_default_queue = RATE_LIMIT_QUEUE_NAME
    app.conf.task_ignore_result = True

    for job_type, handler in JOB_HANDLERS.items():

        def _run(payload: dict[str, Any], _handler=handler) -> str:
            _handler(payload)
            return "ok"

        app.task(name=job_type.value)(_run)

    return app


def get_celery(broker_url: Optional[str] = None) -> Optional[Celery]:
    """Return the process-wide app for a broker, or None when none is configured."""
    redis_url = broker_url or get_settings().redis_url
    if not redis_url:
        return None
    if redis_url not in _CELERY_APPS:
        _CELERY_APPS[redis_url] = create_celery(redis_url)
    return _CELERY_APPS[redis_url]


# Module-level app for `celery -A certapi.worker.celery_app`
app = get_celery()


__all__ = ["app", "create_celery", "get_celery"]
