import hmac

import redis
from fastapi import APIRouter, HTTPException, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.queue import enqueue_best_effort
from app.core.redis_client import get_redis
from app.db import session as session_module
from app.services.maintenance import purge_stale_records_job

router = APIRouter(tags=["health"])


def _require_cron_secret(request: Request) -> None:
    secret = str(settings.cron_secret or "").strip()
    if not secret:
        raise HTTPException(status_code=404, detail="not found")

    provided = str(request.headers.get("x-cron-secret") or "").strip()
    if not provided or not hmac.compare_digest(provided, secret):
        raise HTTPException(status_code=403, detail="forbidden")


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/health/live")
def live():
    return {"status": "live"}


@router.get("/health/ready")
def ready():
    try:
        with session_module.SessionLocal() as db:
            db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        raise HTTPException(status_code=503, detail="db not ready") from e

    try:
        get_redis().ping()
    except redis.RedisError as e:
        raise HTTPException(status_code=503, detail="redis not ready") from e

    return {"status": "ready"}


@router.post("/health/cron/maintenance")
def cron_maintenance(request: Request):
    """Enqueue the retention purge at most once per interval, whatever the scheduler does."""

    _require_cron_secret(request)

    interval_seconds = max(60, int(settings.maintenance_interval_minutes) * 60)
    lock_key = "locks:maintenance_purge"

    try:
        acquired = get_redis().set(lock_key, "1", nx=True, ex=max(60, interval_seconds - 5))
    except redis.RedisError as e:
        raise HTTPException(status_code=503, detail="redis not ready") from e
    if not acquired:
        return {"ok": True, "enqueued": False, "reason": "locked"}

    job = enqueue_best_effort(
        purge_stale_records_job,
        queue=settings.rq_queue_default,
        job_timeout=60 * 10,
        result_ttl=60 * 60,
        failure_ttl=24 * 60 * 60,
    )
    return {"ok": True, "enqueued": True, "job_id": str(job.id) if job is not None else None}
