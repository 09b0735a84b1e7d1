from __future__ import annotations

import logging
import os

import redis
from rq import Worker

from app.core.config import settings


def _queues() -> list[str]:
    raw = str(os.getenv("RQ_WORKER_QUEUES") or "").strip()
    if raw:
        return [q.strip() for q in raw.split(",") if q.strip()]
    # Listed first so rq drains it before maintenance jobs.
    return [str(settings.rq_queue_email), str(settings.rq_queue_default)]


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    logging.getLogger("httpx").setLevel(logging.WARNING)

    conn = redis.Redis.from_url(settings.redis_url)
    queues = _queues()
    logging.getLogger("ecole-lms.worker").info("worker starting queues=%s", ",".join(queues))
    Worker(queues, connection=conn).work()


if __name__ == "__main__":
    main()
