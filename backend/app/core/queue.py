from __future__ import annotations

import logging
from typing import Any, Callable

import redis
from rq import Queue
from rq.job import Job

from app.core.config import settings

log = logging.getLogger(__name__)


def get_queue(name: str | None = None) -> Queue:
    conn = redis.Redis.from_url(settings.redis_url)
    eff = str(name or "").strip() or str(settings.rq_queue_default)
    return Queue(name=eff, connection=conn)


def enqueue_best_effort(func: Callable[..., Any], *args: Any, queue: str | None = None, **kwargs: Any) -> Job | None:
    """Enqueue a side-effect job; a broken Redis never fails the caller.

    Only used after the request's transaction has committed.
    """

    try:
        return get_queue(queue).enqueue(func, *args, **kwargs)
    except redis.RedisError:
        log.exception("failed to enqueue job func=%s", getattr(func, "__name__", func))
        return None
